from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    scans: Dict[str, int]
    points: Dict[str, int]
    redemptions: Dict[str, int]
    holds: Dict[str, int]
    offers: Dict[str, int]
    conflicts: Dict[str, int]
    notifications: Dict[str, int]
    sweeps: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "scans": dict(self.scans),
            "points": dict(self.points),
            "redemptions": dict(self.redemptions),
            "holds": dict(self.holds),
            "offers": dict(self.offers),
            "conflicts": dict(self.conflicts),
            "notifications": dict(self.notifications),
            "sweeps": dict(self.sweeps),
        }


class LoyaltyObservabilityStore:
    """Collect ledger, redemption and perk telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._scans: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._holds: Dict[str, int] = defaultdict(int)
        self._offers: Dict[str, int] = defaultdict(int)
        self._conflicts: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)

    def record_scan(self, outcome: str, *, points: int = 0, bonus_points: int = 0) -> None:
        """Count a scan attempt; ``outcome`` is ``accepted`` or an error kind."""

        with self._lock:
            self._scans[outcome] += 1
            if points:
                self._points["earned"] += points
            if bonus_points:
                self._points["bonus"] += bonus_points

    def record_redemption_transition(self, status: str, *, points: int = 0) -> None:
        with self._lock:
            self._redemptions[status] += 1
            if status == "redeemed" and points:
                self._points["redeemed"] += points

    def record_hold(self, event: str, *, reason: str | None = None) -> None:
        with self._lock:
            self._holds[event] += 1
            if reason:
                self._holds[f"{event}:{reason}"] += 1

    def record_offer_event(self, event: str) -> None:
        with self._lock:
            self._offers[event] += 1

    def record_conflict(self, operation: str) -> None:
        with self._lock:
            self._conflicts["total"] += 1
            self._conflicts[f"operation:{operation}"] += 1

    def record_notification(self, notification_type: str, *, delivered: bool) -> None:
        with self._lock:
            outcome = "delivered" if delivered else "failed"
            self._notifications[outcome] += 1
            self._notifications[f"{notification_type}:{outcome}"] += 1

    def record_sweep(self, summary: Dict[str, int]) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            for key, value in summary.items():
                self._sweeps[key] += int(value)

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                scans=dict(self._scans),
                points=dict(self._points),
                redemptions=dict(self._redemptions),
                holds=dict(self._holds),
                offers=dict(self._offers),
                conflicts=dict(self._conflicts),
                notifications=dict(self._notifications),
                sweeps=dict(self._sweeps),
            )

    def reset(self) -> None:
        with self._lock:
            for bucket in (
                self._scans,
                self._points,
                self._redemptions,
                self._holds,
                self._offers,
                self._conflicts,
                self._notifications,
                self._sweeps,
            ):
                bucket.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
