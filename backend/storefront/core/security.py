"""Admin console credentials: bcrypt password checks and signed JWTs."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt
from jwt.exceptions import PyJWTError

from storefront.core.config import settings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password against ``ADMIN_PASSWORD_HASH``.

    An unset hash never matches, so the console stays closed until a
    password is configured.
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError as e:
        logger.warning(f"Malformed admin password hash: {e}")
        return False


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_admin_token(email: str, expires_delta: timedelta | None = None) -> str:
    """Sign a console session token for ``email``."""
    now = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": email,
        "role": ADMIN_ROLE,
        "iat": now,
        "exp": now + lifetime,
        "jti": secrets.token_urlsafe(16),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """Verified claims, or None for a bad signature, expiry or missing ``exp``."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require": ["exp", "sub"]},
        )
    except PyJWTError as e:
        logger.debug(f"Rejected admin token: {e}")
        return None
