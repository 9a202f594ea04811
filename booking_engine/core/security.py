import hmac
import secrets
import string
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from booking_engine.core.config import settings

CONFIRMATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
CONFIRMATION_CODE_LENGTH = 6


def create_access_token(subject: str | int, expires_minutes: int = 15) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode = {"sub": str(subject), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str | None:
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
        if payload.get("type") != "access":
            return None
        sub = payload.get("sub")
        return str(sub) if sub else None
    except JWTError:
        return None


def verify_cron_secret(presented: str | None) -> bool:
    """Constant-time comparison against CRON_SECRET. An unset secret matches nothing."""
    if not settings.cron_secret or not presented:
        return False
    return hmac.compare_digest(presented.encode(), settings.cron_secret.encode())


def generate_confirmation_code() -> str:
    return "".join(secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(CONFIRMATION_CODE_LENGTH))
