import pytest
from httpx import ASGITransport, AsyncClient

from rewardly_api.core.settings import settings


CUSTOMER = {"X-Session-User": "user-1"}
SELLER = {"X-Session-User": "seller-1"}
INTERNAL = {"X-API-Key": "internal-secret"}


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_earn_and_redeem_over_http(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        await seed.seller(session, "seller-1")

    async with _client(app) as client:
        token_response = await client.post("/api/v1/loyalty/earn-token", headers=CUSTOMER)
        assert token_response.status_code == 200
        qr_data = token_response.json()["qrData"]

        scan = await client.post("/api/v1/loyalty/scans", json={"qrData": qr_data, "amount": 100}, headers=SELLER)
        assert scan.status_code == 201
        assert scan.json()["pointsEarned"] == 10
        assert scan.json()["isFirstScan"] is True

        rescan = await client.post("/api/v1/loyalty/scans", json={"qrData": qr_data, "amount": 100}, headers=SELLER)
        assert rescan.status_code == 429
        assert rescan.json()["detail"]["kind"] == "too_soon"
        assert int(rescan.headers["Retry-After"]) > 0

        created = await client.post(
            "/api/v1/loyalty/redemptions",
            json={"sellerId": "seller-1", "points": 6, "notes": "to go"},
            headers=CUSTOMER,
        )
        assert created.status_code == 201
        body = created.json()
        redemption_id = body["redemption"]["id"]
        assert body["redemption"]["status"] == "pending"
        assert body["redemption"]["customerNotes"] == "to go"
        assert body["qrPayload"]["type"] == "redemption"
        assert body["qrPayload"]["redemption_id"] == redemption_id

        overspend = await client.post(
            "/api/v1/loyalty/redemptions", json={"sellerId": "seller-1", "points": 6}, headers=CUSTOMER
        )
        assert overspend.status_code == 409
        assert overspend.json()["detail"]["kind"] == "insufficient_points"

        balance = await client.get("/api/v1/loyalty/points/seller-1", headers=CUSTOMER)
        assert balance.json()["pointsOnHold"] == 6
        assert balance.json()["availablePoints"] == 4

        committed = await client.post(
            "/api/v1/loyalty/seller/redemptions/commit",
            json={"qrData": body["qrData"], "sellerNotes": "handed over"},
            headers=SELLER,
        )
        assert committed.status_code == 200
        assert committed.json()["status"] == "redeemed"
        assert committed.json()["sellerNotes"] == "handed over"

        replay = await client.post(
            "/api/v1/loyalty/seller/redemptions/commit",
            json={"redemptionId": redemption_id},
            headers=SELLER,
        )
        assert replay.status_code == 409
        assert replay.json()["detail"]["kind"] == "already_processed"

        polled = await client.get(f"/api/v1/loyalty/redemptions/{redemption_id}", headers=CUSTOMER)
        assert polled.json()["status"] == "redeemed"
        assert polled.json()["qrData"] == body["qrData"]

        seller_view = await client.get("/api/v1/loyalty/seller/redemptions?status=redeemed", headers=SELLER)
        assert [item["id"] for item in seller_view.json()["redemptions"]] == [redemption_id]

        wallet = await client.get("/api/v1/loyalty/points", headers=CUSTOMER)
        assert wallet.json()["totalPoints"] == 4
        assert wallet.json()["balances"][0]["sellerId"] == "seller-1"

        history = await client.get("/api/v1/loyalty/points/transactions", headers=CUSTOMER)
        assert history.status_code == 200
        entries = history.json()["transactions"]
        assert [(entry["type"], entry["points"]) for entry in entries] == [("redeem", -6), ("earn", 10)]
        assert entries[0]["redemptionId"] == redemption_id

        earned = await client.get(
            "/api/v1/loyalty/points/transactions?type=earn&sellerId=seller-1", headers=CUSTOMER
        )
        assert [entry["basePoints"] for entry in earned.json()["transactions"]] == [10]

        elsewhere = await client.get("/api/v1/loyalty/points/transactions?sellerId=seller-2", headers=CUSTOMER)
        assert elsewhere.json()["transactions"] == []

        unsupported = await client.get("/api/v1/loyalty/points/transactions?type=refund", headers=CUSTOMER)
        assert unsupported.status_code == 400


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/loyalty/points")
        oversized = await client.get("/api/v1/loyalty/points", headers={"X-Session-User": "u" * 65})

    assert response.status_code == 401
    assert oversized.status_code == 400


@pytest.mark.asyncio
async def test_customer_cancel_and_error_mapping(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "internal-secret")
    async with session_factory() as session:
        await seed.seller(session, "seller-1")

    async with _client(app) as client:
        missing_seller = await client.post(
            "/api/v1/loyalty/redemptions", json={"sellerId": "ghost", "points": 1}, headers=CUSTOMER
        )
        assert missing_seller.status_code == 404
        assert missing_seller.json()["detail"]["kind"] == "seller_not_found"

        invalid = await client.post(
            "/api/v1/loyalty/redemptions", json={"sellerId": "seller-1", "points": 0}, headers=CUSTOMER
        )
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["kind"] == "invalid_points"

        await client.post(
            "/api/v1/loyalty/payments/rewards",
            json={"userId": "user-1", "sellerId": "seller-1", "amount": 20},
            headers=INTERNAL,
        )
        created = await client.post(
            "/api/v1/loyalty/redemptions", json={"sellerId": "seller-1", "points": 5}, headers=CUSTOMER
        )
        redemption_id = created.json()["redemption"]["id"]

        foreign = await client.post(f"/api/v1/loyalty/redemptions/{redemption_id}/cancel", headers=SELLER)
        assert foreign.status_code == 403

        cancelled = await client.post(f"/api/v1/loyalty/redemptions/{redemption_id}/cancel", headers=CUSTOMER)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        listed = await client.get("/api/v1/loyalty/redemptions?status=cancelled", headers=CUSTOMER)
        assert len(listed.json()["redemptions"]) == 1

        bad_filter = await client.get("/api/v1/loyalty/redemptions?status=unknown", headers=CUSTOMER)
        assert bad_filter.status_code == 400

        bad_qr = await client.post(
            "/api/v1/loyalty/seller/redemptions/commit", json={"qrData": "garbage"}, headers=SELLER
        )
        assert bad_qr.status_code == 400


@pytest.mark.asyncio
async def test_payment_rewards_require_internal_key(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
    monkeypatch.setattr(settings, "internal_api_key", "internal-secret")
    payload = {"userId": "user-1", "sellerId": "seller-1", "amount": 250, "paymentReference": "pay_1"}

    async with _client(app) as client:
        denied = await client.post("/api/v1/loyalty/payments/rewards", json=payload)
        allowed = await client.post(
            "/api/v1/loyalty/payments/rewards",
            json=payload,
            headers=INTERNAL,
        )

    assert denied.status_code == 401
    assert allowed.status_code == 201
    assert allowed.json()["source"] == "payment"


@pytest.mark.asyncio
async def test_internal_routes_are_closed_without_a_configured_key(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
    monkeypatch.setattr(settings, "internal_api_key", "")

    async with _client(app) as client:
        minted = await client.post(
            "/api/v1/loyalty/payments/rewards",
            json={"userId": "attacker", "sellerId": "seller-1", "amount": 100},
        )
        guessed = await client.post(
            "/api/v1/loyalty/payments/rewards",
            json={"userId": "attacker", "sellerId": "seller-1", "amount": 100},
            headers={"X-API-Key": ""},
        )
        sweep = await client.post("/api/v1/loyalty/sweeps/expire")
        wallet = await client.get("/api/v1/loyalty/points", headers={"X-Session-User": "attacker"})

    assert minted.status_code == 503
    assert guessed.status_code == 503
    assert sweep.status_code == 503
    assert wallet.json()["totalPoints"] == 0


@pytest.mark.asyncio
async def test_daily_offer_flow_over_http(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        await seed.seller(session, "seller-1")
        await seed.offers(session, "seller-1", "Free cookie")

    async with _client(app) as client:
        empty = await client.get("/api/v1/loyalty/offers/seller-1/today", headers=CUSTOMER)
        assert empty.json()["claim"] is None

        claim = await client.post("/api/v1/loyalty/offers/seller-1/claim", headers=CUSTOMER)
        assert claim.status_code == 200
        assert claim.json()["title"] == "Free cookie"

        code = await client.post("/api/v1/loyalty/offers/seller-1/code", headers=CUSTOMER)
        redeem_code = code.json()["code"]
        assert redeem_code.startswith("RED-GRAB-")

        verified = await client.post("/api/v1/loyalty/offers/verify", json={"code": redeem_code}, headers=SELLER)
        assert verified.status_code == 200
        assert verified.json()["claim"]["status"] == "REDEEMED"

        again = await client.post("/api/v1/loyalty/offers/verify", json={"code": redeem_code}, headers=SELLER)
        assert again.status_code == 409
        assert again.json()["detail"]["kind"] == "already_redeemed"

        today = await client.get("/api/v1/loyalty/offers/seller-1/today", headers=CUSTOMER)
        assert today.json()["status"] == "REDEEMED"


@pytest.mark.asyncio
async def test_health_sweep_and_observability_endpoints(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "internal-secret")
    async with session_factory() as session:
        await seed.seller(session, "seller-1")

    async with _client(app) as client:
        assert (await client.get("/healthz")).json()["status"] == "ok"

        ready = await client.get("/api/v1/health/readyz")
        assert ready.status_code == 200
        components = ready.json()["components"]
        assert components["database"]["status"] == "ready"
        assert components["loyalty_expiry"]["status"] == "disabled"

        await client.post(
            "/api/v1/loyalty/payments/rewards",
            json={"userId": "user-1", "sellerId": "seller-1", "amount": 20},
            headers=INTERNAL,
        )

        sweep = await client.post("/api/v1/loyalty/sweeps/expire", headers=INTERNAL)
        assert sweep.status_code == 200
        assert sweep.json()["expired"] == 0

        snapshot = await client.get("/api/v1/observability/loyalty", headers=INTERNAL)
        assert snapshot.json()["scans"] == {"accepted": 1}
        assert snapshot.json()["sweeps"]["runs"] == 1

        metrics = await client.get("/api/v1/observability/prometheus", headers=INTERNAL)
        text = metrics.text
        assert 'rewardly_loyalty_scans_total{key="accepted"} 1' in text
        assert text.count("# TYPE rewardly_loyalty_scans_total counter") == 1
