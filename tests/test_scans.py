from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from rewardly_api.domain.loyalty.errors import (
    InvalidInputError,
    InvalidTokenError,
    MonthlyLimitReachedError,
    SubscriptionExpiredError,
    SubscriptionInactiveError,
    TooFarFromStoreError,
    TooSoonError,
)
from rewardly_api.models.customer_profile import CustomerEarnToken, CustomerProfile
from rewardly_api.models.loyalty import PointBalance, PointTransaction, PointTransactionSource
from rewardly_api.models.seller import SellerMonthlyScan, SellerProfile, SubscriptionStatus
from rewardly_api.services.loyalty import ScanProcessor, SellerStatsWriter
from rewardly_api.services.notifications import InMemoryPushBackend, LoyaltyNotifier


NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)
STORE_LAT, STORE_LNG = 12.9716, 77.5946


@pytest.mark.asyncio
async def test_issue_earn_token_is_stable(session_factory) -> None:
    async with session_factory() as session:
        processor = ScanProcessor(session)

        first = await processor.issue_earn_token("user-1")
        second = await processor.issue_earn_token("user-1")

        assert first.token == second.token
        assert '"t":"USER_EARN"' in first.qr_payload
        assert await session.get(CustomerProfile, "user-1") is not None
        tokens = (await session.execute(select(CustomerEarnToken))).scalars().all()
        assert len(tokens) == 1


@pytest.mark.asyncio
async def test_first_scan_earns_welcome_bonus_once(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(
            session,
            "seller-1",
            reward_config={"reward_type": "flat", "flat_points": 10, "first_scan_bonus_points": 25},
        )
        processor = ScanProcessor(session)
        receipt = await processor.issue_earn_token("user-1")

        first = await processor.process_user_scan("seller-1", amount=120, qr_data=receipt.qr_payload, now=NOW)
        second = await processor.process_user_scan(
            "seller-1", amount=120, token=receipt.token, now=NOW + timedelta(seconds=30)
        )

        assert first.is_first_scan is True
        assert first.base_points == 10
        assert first.bonus_points == 25
        assert first.points_earned == 35
        assert first.balance == 35
        assert first.source == PointTransactionSource.USER_QR

        assert second.is_first_scan is False
        assert second.bonus_points == 0
        assert second.balance == 45

    async with session_factory() as session:
        entries = (
            await session.execute(select(PointTransaction).order_by(PointTransaction.occurred_at))
        ).scalars().all()
        assert [entry.points for entry in entries] == [35, 10]
        assert entries[0].metadata_json["is_first_scan"] is True

        seller = await session.get(SellerProfile, "seller-1")
        assert seller.total_scans == 2
        assert seller.total_points_distributed == 45
        assert seller.active_customers == 1

        customer = await session.get(CustomerProfile, "user-1")
        assert customer.total_scans == 2
        assert customer.total_points_earned == 45

        assert await SellerStatsWriter(session).monthly_breakdown("seller-1") == {"2024-MAR": 2}

    snapshot = reset_loyalty_store.snapshot()
    assert snapshot.scans["accepted"] == 2
    assert snapshot.points["bonus"] == 25


@pytest.mark.asyncio
async def test_rescan_within_cooldown_is_rejected(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        processor = ScanProcessor(session)
        receipt = await processor.issue_earn_token("user-1")

        await processor.process_user_scan("seller-1", amount=50, token=receipt.token, now=NOW)
        with pytest.raises(TooSoonError) as exc_info:
            await processor.process_user_scan(
                "seller-1", amount=50, token=receipt.token, now=NOW + timedelta(seconds=3)
            )
        assert exc_info.value.retry_after_seconds == 7

        result = await processor.process_user_scan(
            "seller-1", amount=50, token=receipt.token, now=NOW + timedelta(seconds=10)
        )
        assert result.balance == 20


@pytest.mark.asyncio
async def test_unknown_tokens_are_rejected(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        processor = ScanProcessor(session)

        with pytest.raises(InvalidTokenError):
            await processor.process_user_scan("seller-1", amount=10, token="missing", now=NOW)
        with pytest.raises(InvalidTokenError):
            await processor.process_user_scan("seller-1", amount=10, qr_data='{"t":"OTHER"}', now=NOW)
        with pytest.raises(InvalidTokenError):
            await processor.process_user_scan("seller-1", amount=10, now=NOW)

    assert reset_loyalty_store.snapshot().scans == {"invalid_token": 3}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "error"),
    [
        ({"subscription_status": SubscriptionStatus.INACTIVE}, SubscriptionInactiveError),
        ({"subscription_expires_at": NOW - timedelta(days=1)}, SubscriptionExpiredError),
    ],
)
async def test_subscription_gates_scans(session_factory, seed, overrides, error) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1", **overrides)
        processor = ScanProcessor(session)
        receipt = await processor.issue_earn_token("user-1")

        with pytest.raises(error):
            await processor.process_user_scan("seller-1", amount=10, token=receipt.token, now=NOW)

        assert (await session.execute(select(PointBalance))).scalars().all() == []
        token = await session.get(CustomerEarnToken, receipt.token)
        assert token.last_used_at is None


@pytest.mark.asyncio
async def test_monthly_limit_blocks_further_earns(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1", monthly_scan_limit=2)
        processor = ScanProcessor(session)

        await processor.process_payment_reward("user-1", "seller-1", 10, now=NOW)
        await processor.process_payment_reward("user-2", "seller-1", 10, now=NOW)
        with pytest.raises(MonthlyLimitReachedError) as exc_info:
            await processor.process_payment_reward("user-3", "seller-1", 10, now=NOW)
        assert exc_info.value.limit == 2

        next_month = await processor.process_payment_reward(
            "user-3", "seller-1", 10, now=datetime(2024, 4, 1, 0, 5, tzinfo=timezone.utc)
        )
        assert next_month.points_earned == 10
        assert await SellerStatsWriter(session).monthly_breakdown("seller-1") == {
            "2024-MAR": 2,
            "2024-APR": 1,
        }


@pytest.mark.asyncio
async def test_month_counter_never_passes_the_limit(session_factory, seed, monkeypatch) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1", monthly_scan_limit=1)
        processor = ScanProcessor(session)
        await processor.process_payment_reward("user-1", "seller-1", 10, now=NOW)

        async def stale_limit_check(self, config, now):
            return 0

        monkeypatch.setattr(SellerStatsWriter, "ensure_within_monthly_limit", stale_limit_check)
        with pytest.raises(MonthlyLimitReachedError) as exc_info:
            await processor.process_payment_reward("user-2", "seller-1", 10, now=NOW)
        assert exc_info.value.limit == 1

        writer = SellerStatsWriter(session)
        assert await writer.monthly_breakdown("seller-1") == {"2024-MAR": 1}
        balance = (
            await session.execute(select(PointBalance).where(PointBalance.user_id == "user-2"))
        ).scalar_one_or_none()
        assert balance is None

        april = datetime(2024, 4, 2, tzinfo=timezone.utc)
        with pytest.raises(MonthlyLimitReachedError):
            await writer.record_scan("seller-1", points=1, new_customer=False, now=april, limit=0)
        await session.rollback()
        assert await writer.monthly_breakdown("seller-1") == {"2024-MAR": 1}

@pytest.mark.asyncio
async def test_geofence_is_enforced_when_seller_has_location(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1", latitude=STORE_LAT, longitude=STORE_LNG)
        processor = ScanProcessor(session)
        receipt = await processor.issue_earn_token("user-1")

        with pytest.raises(InvalidInputError):
            await processor.process_user_scan("seller-1", amount=10, token=receipt.token, now=NOW)

        with pytest.raises(TooFarFromStoreError) as exc_info:
            await processor.process_user_scan(
                "seller-1",
                amount=10,
                token=receipt.token,
                latitude=13.0,
                longitude=77.6,
                now=NOW,
            )
        assert exc_info.value.max_distance_meters == 100
        assert exc_info.value.distance_meters > 3000

        result = await processor.process_user_scan(
            "seller-1",
            amount=10,
            token=receipt.token,
            latitude=STORE_LAT + 0.0003,
            longitude=STORE_LNG,
            now=NOW,
        )
        assert result.points_earned == 10


@pytest.mark.asyncio
async def test_invalid_amounts_are_rejected(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        processor = ScanProcessor(session)

        for amount in (-1, "abc", True):
            with pytest.raises(InvalidInputError):
                await processor.process_payment_reward("user-1", "seller-1", amount, now=NOW)


@pytest.mark.asyncio
async def test_payment_reward_uses_percentage_config(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(
            session,
            "seller-1",
            reward_config={"reward_type": "percentage", "percentage_value": 5},
        )
        processor = ScanProcessor(session)

        result = await processor.process_payment_reward(
            "user-1", "seller-1", "250.00", payment_reference="pay_123", now=NOW
        )

        assert result.points_earned == 13
        assert result.source == PointTransactionSource.PAYMENT
        entry = await session.get(PointTransaction, result.transaction_id)
        assert entry.metadata_json["payment_reference"] == "pay_123"


@pytest.mark.asyncio
async def test_scan_push_is_sent_after_commit(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.customer(session, "user-1", push_token="ExponentPushToken[abc]")
        backend = InMemoryPushBackend()
        processor = ScanProcessor(session, notifier=LoyaltyNotifier(session, backend=backend))

        await processor.process_payment_reward("user-1", "seller-1", 40, now=NOW)

    assert len(backend.sent_messages) == 1
    message = backend.sent_messages[0]
    assert message["recipient"] == "ExponentPushToken[abc]"
    assert message["title"] == "Points Earned!"
    assert message["metadata"]["type"] == "points_earned"
    assert reset_loyalty_store.snapshot().notifications["delivered"] == 1


class _ExplodingBackend:
    async def send_push(self, recipient, title, body, *, metadata=None) -> None:
        raise RuntimeError("push provider down")


@pytest.mark.asyncio
async def test_push_failure_does_not_undo_the_earn(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.customer(session, "user-1", push_token="ExponentPushToken[abc]")
        processor = ScanProcessor(session, notifier=LoyaltyNotifier(session, backend=_ExplodingBackend()))

        result = await processor.process_payment_reward("user-1", "seller-1", 40, now=NOW)
        assert result.balance == 10

    async with session_factory() as session:
        balance = (await session.execute(select(PointBalance))).scalar_one()
        assert balance.points == 10
    assert reset_loyalty_store.snapshot().notifications["failed"] == 1
