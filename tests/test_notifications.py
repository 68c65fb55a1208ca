import json

import httpx
import pytest

from rewardly_api.services.notifications import (
    ExpoPushBackend,
    InMemoryPushBackend,
    LoyaltyNotifier,
    PushDeliveryError,
)


def _expo(handler) -> ExpoPushBackend:
    return ExpoPushBackend(
        url="https://push.example.test/send",
        access_token="secret",
        android_channel="orders",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_expo_backend_posts_message() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"data": {"status": "ok", "id": "ticket-1"}})

    await _expo(handler).send_push("ExponentPushToken[abc]", "Hi", "Body", metadata={"type": "redemption"})

    assert len(captured) == 1
    request = captured[0]
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["to"] == "ExponentPushToken[abc]"
    assert body["channelId"] == "orders"
    assert body["data"] == {"type": "redemption"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"errors": ["boom"]}),
        httpx.Response(200, json={"data": {"status": "error", "message": "DeviceNotRegistered"}}),
    ],
)
async def test_expo_backend_raises_on_rejection(response) -> None:
    with pytest.raises(PushDeliveryError):
        await _expo(lambda request: response).send_push("token", "Hi", "Body")


def test_expo_backend_requires_url() -> None:
    with pytest.raises(ValueError):
        ExpoPushBackend(url="")


@pytest.mark.asyncio
async def test_notifier_skips_customers_without_push_token(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.customer(session, "user-1")
        backend = InMemoryPushBackend()
        notifier = LoyaltyNotifier(session, backend=backend)

        delivered = await notifier.notify_points_earned(
            user_id="user-1", seller_id="seller-1", shop_name="Chai Point", points=10
        )
        unknown = await notifier.notify_points_earned(
            user_id="user-404", seller_id="seller-1", shop_name="Chai Point", points=10
        )

    assert delivered is False
    assert unknown is False
    assert backend.sent_messages == []


@pytest.mark.asyncio
async def test_notifier_records_redemption_push(session_factory, seed) -> None:
    async with session_factory() as session:
        await seed.customer(session, "user-1", push_token="ExponentPushToken[abc]")
        notifier = LoyaltyNotifier(session, backend=InMemoryPushBackend())

        delivered = await notifier.notify_redemption_completed(
            user_id="user-1",
            seller_id="seller-1",
            shop_name="Chai Point",
            redemption_id="RED_1",
            points=30,
        )

    assert delivered is True
    event = notifier.sent_events[0]
    assert event.event_type == "redemption"
    assert event.body == "You redeemed 30 points at Chai Point"
    assert event.metadata["params"] == {"sellerId": "seller-1", "redemptionId": "RED_1"}


@pytest.mark.asyncio
async def test_disabled_backend_is_a_no_op(session_factory) -> None:
    async with session_factory() as session:
        notifier = LoyaltyNotifier(session, backend=None)

        assert await notifier.notify_points_earned(
            user_id="user-1", seller_id="seller-1", shop_name="Chai Point", points=1
        ) is False
