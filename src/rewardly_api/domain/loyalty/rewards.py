"""Reward calculation for seller earn configurations."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Sequence


class RewardType(str, Enum):
    """Supported seller reward strategies."""

    DEFAULT = "default"
    FLAT = "flat"
    PERCENTAGE = "percentage"
    SLAB = "slab"


@dataclass(frozen=True, slots=True)
class SlabRule:
    """Inclusive spend band awarding a fixed number of points."""

    min: Decimal
    max: Decimal
    points: int

    def matches(self, amount: Decimal) -> bool:
        return self.min <= amount <= self.max


@dataclass(frozen=True)
class RewardConfig:
    """Seller reward configuration as stored on the seller profile."""

    reward_type: RewardType = RewardType.DEFAULT
    default_points_value: int | None = None
    flat_points: int | None = None
    percentage_value: Decimal | None = None
    slab_rules: tuple[SlabRule, ...] = field(default_factory=tuple)
    first_scan_bonus_points: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "RewardConfig":
        """Parse the JSON document persisted for a seller.

        Unknown reward types fall back to ``default``; malformed numbers are
        treated as missing.
        """

        data = data or {}
        raw_type = str(data.get("reward_type") or RewardType.DEFAULT.value).lower()
        try:
            reward_type = RewardType(raw_type)
        except ValueError:
            reward_type = RewardType.DEFAULT

        return cls(
            reward_type=reward_type,
            default_points_value=_to_int(data.get("default_points_value")),
            flat_points=_to_int(data.get("flat_points")),
            percentage_value=_to_decimal(data.get("percentage_value")),
            slab_rules=_parse_slab_rules(data.get("slab_rules")),
            first_scan_bonus_points=max(_to_int(data.get("first_scan_bonus_points")) or 0, 0),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "reward_type": self.reward_type.value,
            "default_points_value": self.default_points_value,
            "flat_points": self.flat_points,
            "percentage_value": float(self.percentage_value) if self.percentage_value is not None else None,
            "slab_rules": [
                {"min": float(rule.min), "max": float(rule.max), "points": rule.points}
                for rule in self.slab_rules
            ],
            "first_scan_bonus_points": self.first_scan_bonus_points,
        }


def calculate_reward_points(amount: Decimal | float | int, config: RewardConfig | Mapping[str, Any] | None) -> int:
    """Return the points earned for ``amount`` under ``config`` (never negative)."""

    if not isinstance(config, RewardConfig):
        config = RewardConfig.from_mapping(config)
    spend = _to_decimal(amount) or Decimal("0")

    if config.reward_type is RewardType.PERCENTAGE:
        if not config.percentage_value:
            return 0
        raw = config.percentage_value / Decimal("100") * spend
        return max(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 0)

    if config.reward_type is RewardType.FLAT:
        return max(config.flat_points or 0, 0)

    if config.reward_type is RewardType.SLAB:
        return _slab_points(spend, config.slab_rules)

    return max(config.default_points_value or 1, 0)


def _slab_points(amount: Decimal, rules: Sequence[SlabRule]) -> int:
    if not rules:
        return 0
    for rule in rules:
        if rule.matches(amount):
            return max(rule.points, 0)
    # Spend above every band still earns the last band's reward.
    if amount > max(rule.max for rule in rules):
        return max(rules[-1].points, 0)
    return 0


def _parse_slab_rules(value: Any) -> tuple[SlabRule, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    rules: list[SlabRule] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        lower = _to_decimal(item.get("min"))
        upper = _to_decimal(item.get("max"))
        points = _to_int(item.get("points"))
        if lower is None or upper is None or points is None:
            continue
        rules.append(SlabRule(min=lower, max=upper, points=points))
    return tuple(rules)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _to_int(value: Any) -> int | None:
    parsed = _to_decimal(value)
    return int(parsed) if parsed is not None else None


__all__ = ["RewardConfig", "RewardType", "SlabRule", "calculate_reward_points"]
