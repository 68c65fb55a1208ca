"""Notification service package."""

from .backend import ExpoPushBackend, InMemoryPushBackend, PushBackend, PushDeliveryError
from .service import LoyaltyNotifier, NotificationEvent, build_push_backend

__all__ = [
    "ExpoPushBackend",
    "InMemoryPushBackend",
    "LoyaltyNotifier",
    "NotificationEvent",
    "PushBackend",
    "PushDeliveryError",
    "build_push_backend",
]
