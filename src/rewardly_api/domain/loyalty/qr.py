"""QR payload encoding for redemption and customer earn codes.

Image rendering happens client-side; only the JSON payloads live here.
"""

from __future__ import annotations

import json
import secrets
import string
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

REDEMPTION_QR_TYPE = "redemption"
EARN_QR_TYPE = "USER_EARN"
EARN_QR_VERSION = 1

_BASE36 = string.digits + string.ascii_lowercase
_REDEEM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass(frozen=True, slots=True)
class RedemptionQRPayload:
    redemption_id: str
    seller_id: str
    user_id: str
    points: int
    timestamp: int
    hash: str
    type: str = REDEMPTION_QR_TYPE

    def encode(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"), sort_keys=True)


def build_redemption_payload(
    *,
    redemption_id: str,
    seller_id: str,
    user_id: str,
    points: int,
    issued_at: datetime,
) -> RedemptionQRPayload:
    """Bind a redemption to a fresh random nonce."""

    return RedemptionQRPayload(
        redemption_id=redemption_id,
        seller_id=seller_id,
        user_id=user_id,
        points=points,
        timestamp=int(issued_at.timestamp() * 1000),
        hash=secrets.token_hex(12),
    )


def parse_redemption_payload(data: str) -> RedemptionQRPayload | None:
    parsed = _load(data)
    if not parsed or parsed.get("type") != REDEMPTION_QR_TYPE:
        return None
    try:
        return RedemptionQRPayload(
            redemption_id=str(parsed["redemption_id"]),
            seller_id=str(parsed["seller_id"]),
            user_id=str(parsed["user_id"]),
            points=int(parsed["points"]),
            timestamp=int(parsed.get("timestamp") or 0),
            hash=str(parsed.get("hash") or ""),
        )
    except (KeyError, TypeError, ValueError):
        return None


def encode_earn_payload(token: str) -> str:
    return json.dumps({"v": EARN_QR_VERSION, "t": EARN_QR_TYPE, "token": token}, separators=(",", ":"))


def parse_earn_token(data: str) -> str | None:
    """Extract the earn token from a scanned payload, or accept a bare token."""

    candidate = (data or "").strip()
    if not candidate:
        return None
    if not candidate.startswith("{"):
        return candidate
    parsed = _load(candidate)
    if not parsed or parsed.get("t") != EARN_QR_TYPE:
        return None
    token = parsed.get("token")
    return str(token) if token else None


def generate_redemption_id(now: datetime | None = None) -> str:
    """Return an id such as ``RED_LXQ3K9Z2_4F7QAB``: base36 epoch millis plus noise."""

    millis = int((now.timestamp() if now else time.time()) * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"RED_{_to_base36(millis)}_{suffix}".upper()


def generate_redeem_code(prefix: str, length: int) -> str:
    body = "".join(secrets.choice(_REDEEM_CODE_ALPHABET) for _ in range(length))
    return f"{prefix}{body}"


def generate_earn_token() -> str:
    return secrets.token_urlsafe(24)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _load(data: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


__all__ = [
    "EARN_QR_TYPE",
    "REDEMPTION_QR_TYPE",
    "RedemptionQRPayload",
    "build_redemption_payload",
    "encode_earn_payload",
    "generate_earn_token",
    "generate_redeem_code",
    "generate_redemption_id",
    "parse_earn_token",
    "parse_redemption_payload",
]
