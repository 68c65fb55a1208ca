"""Best-effort push notifications for loyalty events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewardly_api.core.settings import get_settings
from rewardly_api.models.customer_profile import CustomerProfile
from rewardly_api.observability.loyalty import get_loyalty_store

from .backend import ExpoPushBackend, InMemoryPushBackend, PushBackend

WALLET_SCREEN = "/(drawer)/(tabs)/wallet"
ACTIVITY_SCREEN = "/(drawer)/(tabs)/activity"


@dataclass
class NotificationEvent:
    """Representation of a push that was handed to the backend."""

    recipient: str
    title: str
    body: str
    event_type: str
    metadata: dict[str, Any]


class LoyaltyNotifier:
    """Delivers points and redemption pushes to customers.

    Every public method swallows delivery failures: the mutation that triggered
    the push is already committed by the time it is called.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[PushBackend] = None,
    ) -> None:
        self._db = db_session
        self._backend = backend if backend is not None else build_push_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    async def notify_points_earned(
        self,
        *,
        user_id: str,
        seller_id: str,
        shop_name: str,
        points: int,
        bonus_points: int = 0,
    ) -> bool:
        body = f"You earned {points} points at {shop_name}"
        if bonus_points:
            body += f" (including a {bonus_points} point welcome bonus)"
        return await self._deliver(
            user_id,
            title="Points Earned!",
            body=body,
            event_type="points_earned",
            data={
                "type": "points_earned",
                "screen": WALLET_SCREEN,
                "params": {"sellerId": seller_id, "points": points},
            },
        )

    async def notify_redemption_completed(
        self,
        *,
        user_id: str,
        seller_id: str,
        shop_name: str,
        redemption_id: str,
        points: int,
    ) -> bool:
        return await self._deliver(
            user_id,
            title="Redemption Successful",
            body=f"You redeemed {points} points at {shop_name}",
            event_type="redemption",
            data={
                "type": "redemption",
                "screen": ACTIVITY_SCREEN,
                "params": {"sellerId": seller_id, "redemptionId": redemption_id},
            },
        )

    async def _deliver(
        self,
        user_id: str,
        *,
        title: str,
        body: str,
        event_type: str,
        data: dict[str, Any],
    ) -> bool:
        if self._backend is None:
            return False

        store = get_loyalty_store()
        try:
            recipient = await self._resolve_push_token(user_id)
            if not recipient:
                logger.debug("Skipping push, no token registered", user_id=user_id, event_type=event_type)
                return False
            await self._backend.send_push(recipient, title, body, metadata=data)
        except Exception as exc:  # noqa: BLE001
            store.record_notification(event_type, delivered=False)
            logger.warning(
                "Loyalty push delivery failed",
                user_id=user_id,
                event_type=event_type,
                error=str(exc),
            )
            return False

        store.record_notification(event_type, delivered=True)
        self._events.append(
            NotificationEvent(
                recipient=recipient,
                title=title,
                body=body,
                event_type=event_type,
                metadata=data,
            )
        )
        logger.info("Loyalty push delivered", user_id=user_id, event_type=event_type)
        return True

    async def _resolve_push_token(self, user_id: str) -> str | None:
        result = await self._db.execute(
            select(CustomerProfile.push_token).where(CustomerProfile.id == user_id)
        )
        return result.scalar_one_or_none()


def build_push_backend() -> Optional[PushBackend]:
    """Construct the push backend selected in settings (``None`` when disabled)."""

    settings = get_settings()
    if settings.push_backend == "expo":
        return ExpoPushBackend(
            url=settings.expo_push_url,
            access_token=settings.expo_access_token,
            timeout_seconds=settings.push_timeout_seconds,
            android_channel=settings.push_android_channel,
        )
    if settings.push_backend == "memory":
        return InMemoryPushBackend()
    return None
