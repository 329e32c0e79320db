from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt

from supermd.config import get_settings
from supermd.exceptions import IdentityError

logger = logging.getLogger("auth")


@dataclass(frozen=True)
class IdentityClaims:
    """Identity extracted from a verified bearer token."""

    subject: str
    email: str | None = None
    raw_claims: dict[str, Any] | None = None


async def verify_identity_token(token: str) -> IdentityClaims:
    """Verify an HS256 bearer token and return its claims.

    In development the configured literal dev token resolves to the
    development user without a signature check.
    """
    settings = get_settings()

    if settings.is_development and token == settings.auth_dev_token:
        return IdentityClaims(
            subject=settings.auth_dev_user_id,
            raw_claims={"sub": settings.auth_dev_user_id},
        )

    if not settings.auth_jwt_secret:
        raise IdentityError("Token verification is not configured")

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.PyJWTError as exc:
        logger.info(
            "Rejected bearer token",
            extra={"service": "auth", "error": type(exc).__name__},
        )
        raise IdentityError(f"Invalid token: {exc}") from exc

    subject = str(claims.get("sub") or "")
    if not subject:
        raise IdentityError("Token missing subject")

    return IdentityClaims(subject=subject, email=claims.get("email"), raw_claims=claims)
