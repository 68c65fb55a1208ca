import asyncio
import random
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from rewardly_api.domain.loyalty.errors import (
    AlreadyRedeemedError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    SellerNotFoundError,
)
from rewardly_api.models.offer import OfferClaim, OfferClaimStatus, OfferCodeStatus, OfferRedemptionCode
from rewardly_api.services.loyalty import OfferService


NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)
TODAY = date(2024, 3, 15)


@pytest.mark.asyncio
async def test_claim_date_follows_offer_timezone(session_factory) -> None:
    async with session_factory() as session:
        service = OfferService(session)

        assert service.claim_date_for(NOW) == TODAY
        assert service.claim_date_for(datetime(2024, 3, 15, 19, 0, tzinfo=timezone.utc)) == date(2024, 3, 16)


@pytest.mark.asyncio
async def test_assign_today_offer_is_stable_for_the_day(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie", "10% off", "Extra shot")

        first = await OfferService(session, rng=random.Random(1)).assign_today_offer("user-1", "seller-1", now=NOW)
        again = await OfferService(session, rng=random.Random(99)).assign_today_offer(
            "user-1", "seller-1", now=NOW + timedelta(hours=2)
        )

        assert first.status == OfferClaimStatus.ASSIGNED
        assert first.claim_date == TODAY
        assert first.claim_id == "user-1_seller-1_2024-03-15"
        assert again.offer_id == first.offer_id
        assert reset_loyalty_store.snapshot().offers == {"assigned": 1}

        tomorrow = await OfferService(session).assign_today_offer("user-1", "seller-1", now=NOW + timedelta(days=1))
        assert tomorrow.claim_date == TODAY + timedelta(days=1)


@pytest.mark.asyncio
async def test_assign_requires_seller_and_active_offers(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        service = OfferService(session)

        with pytest.raises(SellerNotFoundError):
            await service.assign_today_offer("user-1", "ghost", now=NOW)
        with pytest.raises(NotFoundError):
            await service.assign_today_offer("user-1", "seller-1", now=NOW)


@pytest.mark.asyncio
async def test_code_generation_and_verification(session_factory, seed, reset_loyalty_store) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.seller(session, "seller-2", shop_name="Bakehouse")
        await seed.offers(session, "seller-1", "Free cookie")
        service = OfferService(session)

        with pytest.raises(NotFoundError):
            await service.generate_redeem_code("user-1", "seller-1", now=NOW)

        await service.assign_today_offer("user-1", "seller-1", now=NOW)
        code = await service.generate_redeem_code("user-1", "seller-1", now=NOW)
        same = await service.generate_redeem_code("user-1", "seller-1", now=NOW)

        assert code.code == same.code
        assert code.code.startswith("RED-GRAB-")
        assert len(code.code) == len("RED-GRAB-") + 6
        assert code.status == OfferCodeStatus.PENDING

        status = await service.get_today_status("user-1", "seller-1", now=NOW)
        assert status.status == OfferClaimStatus.CLAIMED.value
        assert status.code.code == code.code

        with pytest.raises(ForbiddenError):
            await service.verify_redeem_code("seller-2", code.code, now=NOW)
        with pytest.raises(NotFoundError):
            await service.verify_redeem_code("seller-1", "RED-GRAB-NOPE00", now=NOW)

        verification = await service.verify_redeem_code("seller-1", f"  {code.code.lower()} ", now=NOW)
        assert verification.code.status == OfferCodeStatus.REDEEMED
        assert verification.claim.status == OfferClaimStatus.REDEEMED

        with pytest.raises(AlreadyRedeemedError):
            await service.verify_redeem_code("seller-1", code.code, now=NOW)
        with pytest.raises(AlreadyRedeemedError):
            await service.generate_redeem_code("user-1", "seller-1", now=NOW)

    offers = reset_loyalty_store.snapshot().offers
    assert offers["redeemed"] == 1
    assert offers["verify_rejected"] == 1


@pytest.mark.asyncio
async def test_expire_unredeemed_closes_stale_claims(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")
        service = OfferService(session)

        await service.assign_today_offer("user-1", "seller-1", now=NOW)
        code = await service.generate_redeem_code("user-1", "seller-1", now=NOW)
        await service.assign_today_offer("user-2", "seller-1", now=NOW)
        await service.assign_today_offer("user-3", "seller-1", now=NOW + timedelta(days=1))

        result = await service.expire_unredeemed(TODAY, now=NOW + timedelta(days=1))

        assert result.claims_expired == 2
        assert result.codes_expired == 1

        claim = await session.get(OfferClaim, ("user-1", "seller-1", TODAY), populate_existing=True)
        assert claim.status == OfferClaimStatus.EXPIRED
        later = await session.get(OfferClaim, ("user-3", "seller-1", TODAY + timedelta(days=1)), populate_existing=True)
        assert later.status == OfferClaimStatus.ASSIGNED

        with pytest.raises(ExpiredError):
            await service.verify_redeem_code("seller-1", code.code, now=NOW + timedelta(days=1))
        with pytest.raises(ExpiredError):
            await service.generate_redeem_code("user-2", "seller-1", now=NOW)


@pytest.mark.asyncio
async def test_concurrent_verification_redeems_once(file_session_factory, seed) -> None:
    async with file_session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")
        service = OfferService(session)
        await service.assign_today_offer("user-1", "seller-1", now=NOW)
        code = await service.generate_redeem_code("user-1", "seller-1", now=NOW)

    async def attempt() -> str:
        async with file_session_factory() as session:
            try:
                await OfferService(session).verify_redeem_code("seller-1", code.code, now=NOW)
            except AlreadyRedeemedError:
                return "rejected"
            return "redeemed"

    outcomes = await asyncio.gather(attempt(), attempt())

    assert sorted(outcomes) == ["redeemed", "rejected"]
    async with file_session_factory() as session:
        stored = await session.get(OfferRedemptionCode, code.code)
        assert stored.status == OfferCodeStatus.REDEEMED


@pytest.mark.asyncio
async def test_racing_code_requests_share_one_code(file_session_factory, seed) -> None:
    async with file_session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")
        await OfferService(session).assign_today_offer("user-1", "seller-1", now=NOW)

    rival_codes: list[str] = []

    async with file_session_factory() as session:
        service = OfferService(session)
        original_unique_code = service._unique_code

        async def unique_code_after_rival() -> str:
            if not rival_codes:
                async with file_session_factory() as rival_session:
                    rival = await OfferService(rival_session).generate_redeem_code("user-1", "seller-1", now=NOW)
                    rival_codes.append(rival.code)
            return await original_unique_code()

        service._unique_code = unique_code_after_rival
        issued = await service.generate_redeem_code("user-1", "seller-1", now=NOW)

    assert issued.code == rival_codes[0]
    async with file_session_factory() as session:
        codes = (await session.execute(select(func.count()).select_from(OfferRedemptionCode))).scalar_one()
        assert codes == 1
        claim = await session.get(OfferClaim, ("user-1", "seller-1", TODAY))
        assert claim.redeem_code == issued.code
        assert claim.version == 2


@pytest.mark.asyncio
async def test_verify_requires_the_claims_live_code(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")
        service = OfferService(session)
        await service.assign_today_offer("user-1", "seller-1", now=NOW)
        live = await service.generate_redeem_code("user-1", "seller-1", now=NOW)

        session.add_all(
            [
                OfferRedemptionCode(
                    code="RED-GRAB-STALE1",
                    user_id="user-1",
                    seller_id="seller-1",
                    offer_id="offer-1",
                    claim_date=TODAY,
                    status=OfferCodeStatus.PENDING,
                ),
                OfferRedemptionCode(
                    code="RED-GRAB-NOCLM1",
                    user_id="user-9",
                    seller_id="seller-1",
                    offer_id="offer-1",
                    claim_date=TODAY,
                    status=OfferCodeStatus.PENDING,
                ),
            ]
        )
        await session.commit()

        with pytest.raises(NotFoundError):
            await service.verify_redeem_code("seller-1", "RED-GRAB-STALE1", now=NOW)
        with pytest.raises(NotFoundError):
            await service.verify_redeem_code("seller-1", "RED-GRAB-NOCLM1", now=NOW)

        verification = await service.verify_redeem_code("seller-1", live.code, now=NOW)
        assert verification.claim.status == OfferClaimStatus.REDEEMED
        assert verification.claim.version == 3

        stale = await session.get(OfferRedemptionCode, "RED-GRAB-STALE1", populate_existing=True)
        assert stale.status == OfferCodeStatus.PENDING
