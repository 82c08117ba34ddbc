"""Admin PIN verification and admin session JWTs."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import Settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Bcrypt limits input to 72 bytes; truncate to avoid ValueError
_BCRYPT_MAX_BYTES = 72

ADMIN_SUBJECT = "admin"


def _truncate_for_bcrypt(s: str) -> str:
    """Truncate string to 72 bytes (UTF-8) for bcrypt."""
    b = s.encode("utf-8")[: _BCRYPT_MAX_BYTES]
    return b.decode("utf-8", errors="ignore")


def hash_pin(pin: str) -> str:
    """Bcrypt hash for GORZ_ADMIN_PIN_HASH."""
    return pwd_context.hash(_truncate_for_bcrypt(pin))


def verify_pin(plain: str, hashed: str) -> bool:
    """Verify a PIN against its hash. An unset hash never verifies."""
    if not plain or not hashed:
        return False
    try:
        return pwd_context.verify(_truncate_for_bcrypt(plain), hashed)
    except ValueError:
        # Malformed hash in config
        return False


def create_admin_token(settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """Short-lived admin session JWT."""
    if not settings.jwt_secret:
        raise RuntimeError("GORZ_JWT_SECRET is not configured")
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.admin_session_minutes)
    )
    to_encode: dict[str, Any] = {"sub": ADMIN_SUBJECT, "exp": expire, "type": "admin"}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> Optional[dict[str, Any]]:
    """Decode and validate a JWT; return payload or None."""
    if not settings.jwt_secret:
        return None
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def is_admin_token(settings: Settings, token: str) -> bool:
    payload = decode_token(settings, token)
    return bool(payload) and payload.get("type") == "admin" and payload.get("sub") == ADMIN_SUBJECT
