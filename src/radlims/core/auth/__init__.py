"""Identity context: principal model and token verification."""

from radlims.core.auth.identity import Identity, Role
from radlims.core.auth.jwt import create_identity_token, verify_identity_token

__all__ = [
    "Identity",
    "Role",
    "create_identity_token",
    "verify_identity_token",
]
