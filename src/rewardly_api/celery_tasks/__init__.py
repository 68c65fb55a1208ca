"""Celery task modules for Rewardly."""

# Import submodules so Celery autodiscovery registers tasks.
from . import loyalty_expiry as _loyalty_expiry  # noqa: F401

__all__ = ["_loyalty_expiry"]
