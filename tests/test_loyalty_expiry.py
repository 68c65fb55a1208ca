from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from rewardly_api.jobs.loyalty import run_loyalty_expiry_sweep
from rewardly_api.models.loyalty import HoldStatus, PointHold, Redemption, RedemptionStatus
from rewardly_api.models.offer import OfferClaim, OfferClaimStatus
from rewardly_api.services.loyalty import HoldManager, LedgerStore, OfferService, RedemptionStateMachine
from rewardly_api.tasks.loyalty_expiry import run_loyalty_expiry
from rewardly_api.workers import LoyaltyExpiryWorker


NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


async def _seed_stale_state(session, seed) -> str:
    await seed.seller(session, "seller-1")
    await seed.offers(session, "seller-1", "Free cookie")
    await LedgerStore(session).increment("user-1", "seller-1", 100, now=NOW)
    await session.commit()

    receipt = await RedemptionStateMachine(session).create("user-1", "seller-1", 20, now=NOW)

    # Hold left behind by a redemption that no longer exists.
    await HoldManager(session).reserve("user-1", "seller-1", 15, "RED_GHOST", now=NOW)
    await session.commit()

    await OfferService(session).assign_today_offer("user-1", "seller-1", now=NOW)
    return receipt.redemption.id


@pytest.mark.asyncio
async def test_sweep_expires_redemptions_holds_and_offers(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        redemption_id = await _seed_stale_state(session, seed)

    summary = await run_loyalty_expiry_sweep(
        session_factory=session_factory,
        now=NOW + timedelta(days=1),
    )

    assert summary["expired"] == 1
    assert summary["orphan_holds_released"] == 1
    assert summary["offer_claims_expired"] == 1
    assert summary["offer_codes_expired"] == 0
    assert summary["offer_claim_date"] == "2024-03-15"

    async with session_factory() as session:
        redemption = await session.get(Redemption, redemption_id)
        assert redemption.status == RedemptionStatus.EXPIRED

        holds = (await session.execute(select(PointHold))).scalars().all()
        assert {hold.status for hold in holds} == {HoldStatus.RELEASED}
        assert {hold.release_reason for hold in holds} == {"expired", "reconciled"}

        claim = (await session.execute(select(OfferClaim))).scalar_one()
        assert claim.status == OfferClaimStatus.EXPIRED

        record = await LedgerStore(session).get_record("user-1", "seller-1")
        assert record.points == 100
        assert record.points_on_hold == 0

    sweeps = reset_loyalty_store.snapshot().sweeps
    assert sweeps["runs"] == 1
    assert sweeps["expired"] == 1


@pytest.mark.asyncio
async def test_sweep_is_idempotent(session_factory, seed) -> None:
    async with session_factory() as session:
        await _seed_stale_state(session, seed)

    await run_loyalty_expiry_sweep(session_factory=session_factory, now=NOW + timedelta(days=1))
    second = await run_loyalty_expiry_sweep(session_factory=session_factory, now=NOW + timedelta(days=1))

    assert second["expired"] == 0
    assert second["orphan_holds_released"] == 0
    assert second["offer_claims_expired"] == 0


@pytest.mark.asyncio
async def test_sweep_leaves_live_state_alone(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")
        await LedgerStore(session).increment("user-1", "seller-1", 100, now=NOW)
        await session.commit()
        await RedemptionStateMachine(session).create("user-1", "seller-1", 20, now=NOW)
        await OfferService(session).assign_today_offer("user-1", "seller-1", now=NOW)

    summary = await run_loyalty_expiry_sweep(session_factory=session_factory, now=NOW + timedelta(minutes=1))

    assert summary["expired"] == 0
    assert summary["orphan_holds_released"] == 0
    assert summary["offer_claims_expired"] == 0


@pytest.mark.asyncio
async def test_worker_and_task_runners_share_the_sweep(session_factory, seed) -> None:
    async with session_factory() as session:
        await _seed_stale_state(session, seed)

    worker = LoyaltyExpiryWorker(session_factory, interval_seconds=3600, batch_size=10)
    summary = await worker.run_once()

    assert summary["expired"] == 1
    assert worker.last_summary == summary
    assert worker.is_running is False

    follow_up = await run_loyalty_expiry(session_factory=session_factory, limit=10)
    assert follow_up["expired"] == 0
