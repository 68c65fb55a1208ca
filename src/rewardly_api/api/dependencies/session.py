"""Caller identity dependencies for customer and seller APIs."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, status


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller forwarded by the identity gateway.

    Sellers authenticate with the same identity provider, so a seller's ``uid``
    doubles as its seller id.
    """

    uid: str


async def require_caller(
    session_user: str | None = Header(None, alias="X-Session-User"),
) -> CallerIdentity:
    """Resolve the authenticated caller from forwarded session headers."""

    uid = (session_user or "").strip()
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )
    if len(uid) > 64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        )
    return CallerIdentity(uid=uid)
