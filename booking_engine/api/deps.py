from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.db import get_session, get_session_maker
from booking_engine.core.security import decode_access_token, verify_cron_secret
from booking_engine.services.email_service import EmailNotificationGateway, NotificationGateway
from booking_engine.services.reminder_service import ReminderScheduler

__all__ = [
    "get_current_owner_id",
    "get_notification_gateway",
    "get_reminder_scheduler",
    "get_session",
    "require_cron_secret",
]

security = HTTPBearer(auto_error=False)


async def get_current_owner_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    """Owner id from a bearer token issued by the account service."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    subject = decode_access_token(credentials.credentials)
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return int(subject)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Reject the trigger call before any processing unless it carries the shared secret."""
    presented = None
    if authorization and authorization.lower().startswith("bearer "):
        presented = authorization[len("bearer "):].strip()
    if not verify_cron_secret(presented):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_notification_gateway() -> NotificationGateway:
    return EmailNotificationGateway()


def get_reminder_scheduler(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    gateway: NotificationGateway = Depends(get_notification_gateway),
) -> ReminderScheduler:
    return ReminderScheduler(session_maker, gateway)
