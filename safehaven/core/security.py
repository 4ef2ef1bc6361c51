"""
security.py — Password hashing and JWT utilities.

Uses:
  - bcrypt directly (no passlib wrapper)
  - python-jose for HS256 JWT creation / verification

The token is the only thing SafeHaven needs from the auth layer: a stable
user id (the "sub" claim). Both the REST dependency in routes/auth.py and
the WebSocket stream in routes/stream.py decode it through this module.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from safehaven.core.config import settings


def hash_password(plain: str) -> str:
    """Return bcrypt hash of *plain* (bcrypt only reads the first 72 bytes)."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT whose subject is the user's string ObjectId.

    expires_delta defaults to settings.jwt_expiry_hours.
    """
    expire = datetime.now(tz=timezone.utc) + (expires_delta or timedelta(hours=settings.jwt_expiry_hours))
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """Return the user id from a valid token, or None if missing/expired/forged."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    return payload.get("sub")
