"""Identity resolution: bearer token -> opaque user id."""

from supermd.auth.identity import IdentityClaims, verify_identity_token

__all__ = [
    "IdentityClaims",
    "verify_identity_token",
]
