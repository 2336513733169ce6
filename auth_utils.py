"""
Authentication utilities: Password hashing and JWT session tokens
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from passlib.context import CryptContext
from config.settings import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# JWT configuration
ALGORITHM = "HS256"
SESSION_DAYS = 7
SESSION_MAX_AGE_SECONDS = SESSION_DAYS * 24 * 60 * 60


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(password, password_hash)


def _require_secret() -> str:
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot sign or verify session tokens.")
    return settings.jwt_secret_key


def create_jwt(principal_id: str, expires_in: Optional[timedelta] = None) -> str:
    """
    Create a session token whose subject is the principal id.

    A negative ``expires_in`` yields an already-expired token (used by tests).

    Raises:
        ValueError: If JWT_SECRET_KEY is not set
    """
    secret = _require_secret()
    payload = {
        "sub": principal_id,
        "exp": datetime.now(timezone.utc) + (expires_in or timedelta(days=SESSION_DAYS)),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_jwt(token: str) -> Optional[dict]:
    """Decode a session token. Returns None if invalid or expired."""
    secret = _require_secret()
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
