"""Bearer token verification.

Identity issuance is external. The gateway only verifies HS256 tokens and
reads the user id from ``sub``.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header
from jose import JWTError, jwt

from behavioral_engine.common.config import get_config
from behavioral_engine.common.exceptions import AuthenticationError


def create_access_token(
    user_id: str,
    expires_minutes: int = 60,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> str:
    """Issue a token for ``user_id`` (tests and local tooling)."""
    config = get_config()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(
        {"sub": user_id, "exp": expire},
        secret or config.jwt_secret,
        algorithm=algorithm or config.jwt_algorithm,
    )


def decode_token(token: str) -> str:
    """Verify ``token`` and return its user id.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    config = get_config()
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError("Could not validate credentials") from e

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return str(user_id)


def get_current_user(authorization: Optional[str] = Header(default=None)) -> str:
    """FastAPI dependency: the authenticated user id."""
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Authorization header must be a Bearer token")
    return decode_token(token.strip())
