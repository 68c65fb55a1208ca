"""Loyalty job exports."""

from .expiry import run_loyalty_expiry_sweep  # noqa: F401

__all__ = ["run_loyalty_expiry_sweep"]
