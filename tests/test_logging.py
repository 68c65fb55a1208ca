from loguru import logger

from rewardly_api.core.logging import build_log_payload


METADATA = {"service_name": "rewardly-api", "environment": "test", "version": "0.1.0"}


def test_log_payload_flattens_bound_context() -> None:
    captured: list[dict] = []
    handler_id = logger.add(lambda message: captured.append(build_log_payload(message.record, METADATA)))
    try:
        logger.bind(redemption_id="RED_1").info("Committed redemption", points=30)
    finally:
        logger.remove(handler_id)

    payload = captured[0]
    assert payload["message"] == "Committed redemption"
    assert payload["level"] == "info"
    assert payload["service"] == "rewardly-api"
    assert payload["environment"] == "test"
    assert payload["redemption_id"] == "RED_1"
    assert payload["points"] == 30


def test_log_payload_names_exceptions() -> None:
    captured: list[dict] = []
    handler_id = logger.add(lambda message: captured.append(build_log_payload(message.record, METADATA)))
    try:
        try:
            raise ValueError("boom")
        except ValueError:
            logger.exception("Sweep failed")
    finally:
        logger.remove(handler_id)

    assert captured[0]["exception"] == "ValueError"
