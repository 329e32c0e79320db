"""Common HTTP dependencies (auth, current user)."""

from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, status

from supermd.auth import IdentityClaims, verify_identity_token
from supermd.exceptions import IdentityError
from supermd.infrastructure.logging import set_request_context

logger = logging.getLogger("auth")


async def get_identity_claims(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> IdentityClaims:
    """Extract and verify identity from a bearer token."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format",
        )

    try:
        return await verify_identity_token(token)
    except IdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc


async def get_current_user_id(
    identity: IdentityClaims = Depends(get_identity_claims),
) -> str:
    """Opaque id of the authenticated user; the memory log partition key."""
    set_request_context(user_id=identity.subject)
    return identity.subject
