"""Push backend implementations for loyalty notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import httpx


class PushDeliveryError(RuntimeError):
    """Raised when the push provider rejects a message."""


class PushBackend(Protocol):
    """Protocol for push notification connectors."""

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class ExpoPushBackend:
    """Expo push service connector backed by ``httpx``."""

    def __init__(
        self,
        *,
        url: str,
        access_token: str | None = None,
        timeout_seconds: float = 10.0,
        android_channel: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Expo push URL must be configured")
        self._url = url
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds
        self._android_channel = android_channel
        self._transport = transport

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        message: dict[str, Any] = {
            "to": recipient,
            "sound": "default",
            "title": title,
            "body": body,
            "data": metadata or {},
            "priority": "high",
        }
        if self._android_channel:
            message["channelId"] = self._android_channel

        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            response = await client.post(self._url, json=message, headers=headers)

        if response.status_code >= 400:
            raise PushDeliveryError(f"Expo push responded with status {response.status_code}")
        payload = response.json() if response.content else {}
        ticket = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(ticket, dict) and ticket.get("status") == "error":
            raise PushDeliveryError(str(ticket.get("message") or "Expo push ticket error"))


@dataclass
class InMemoryPushBackend:
    """In-memory push dispatcher for validation."""

    sent_messages: List[dict[str, Any]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_push(
        self,
        recipient: str,
        title: str,
        body: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.sent_messages.append(
            {
                "recipient": recipient,
                "title": title,
                "body": body,
                "metadata": metadata or {},
            }
        )
