"""Identity token creation and verification.

Tokens are HS256 JWTs issued by the external identity provider. RadLIMS only
verifies them; ``create_identity_token`` exists for tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog

from radlims.core.auth.identity import Identity
from radlims.core.config import get_settings

logger = structlog.get_logger(__name__)

JWT_ALGORITHM: str = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES: int = 60


def create_identity_token(
    identity: Identity,
    expires_in: timedelta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
) -> str:
    """Create a signed access token for an identity.

    Args:
        identity: The principal to encode.
        expires_in: Token lifetime.

    Returns:
        Encoded JWT string.

    Raises:
        RuntimeError: If no signing secret is configured.
    """
    secret = get_settings().jwt_secret
    if not secret:
        raise RuntimeError("RADLIMS_JWT_SECRET is not set; cannot sign identity tokens")

    now = datetime.now(timezone.utc)
    payload = {
        **identity.to_claims(),
        "type": "access",
        "exp": now + expires_in,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_identity_token(token: str) -> Optional[Identity]:
    """Verify a token and extract the identity it carries.

    Args:
        token: The JWT token string.

    Returns:
        Identity if the token is valid, None if invalid, expired or malformed.
        Always None while no signing secret is configured.
    """
    secret = get_settings().jwt_secret
    if not secret:
        # Unconfigured install: no token verifies
        logger.warning("jwt_secret_unset")
        return None

    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if payload.get("type") != "access":
        return None

    try:
        return Identity.from_claims(payload)
    except (KeyError, ValueError):
        logger.warning("identity_claims_invalid", sub=payload.get("sub"))
        return None
