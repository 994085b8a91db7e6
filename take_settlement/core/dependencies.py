"""FastAPI dependencies for authentication, shared secrets, and services."""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.grading_engine import GradingCascadeEngine, SettlementConfig
from ..services.notification_service import NotificationDispatcher, build_transport
from ..services.pack_scheduler import PackScheduler, SchedulerConfig
from ..services.sms_conversation import SmsConversationEngine
from .config import get_settings
from .database import get_session, get_session_factory
from .security import decode_token, verify_shared_secret

logger = logging.getLogger(__name__)
settings = get_settings()

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentOperator:
    """Represents the authenticated operator behind an admin request."""

    def __init__(self, subject: str, role: str):
        self.subject = subject
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role in ("owner", "admin")


async def get_current_operator(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> CurrentOperator:
    """Validate the bearer token and return the operator context."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    return CurrentOperator(subject=payload.sub, role=payload.role)


def require_admin(
    operator: Annotated[CurrentOperator, Depends(get_current_operator)],
) -> CurrentOperator:
    """Require admin or owner role."""
    if not operator.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return operator


def require_cron_key(
    x_cron_key: Annotated[str | None, Header()] = None,
) -> None:
    """Protect job triggers with the shared cron secret."""
    if not verify_shared_secret(x_cron_key, settings.cron_secret):
        logger.warning("Rejected job trigger with missing or invalid X-Cron-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def get_dispatcher() -> AsyncGenerator[NotificationDispatcher, None]:
    """Provide a dispatcher bound to the configured SMS transport."""
    transport = build_transport(settings)
    dispatcher = NotificationDispatcher(
        transport, concurrency=settings.notification_concurrency
    )
    try:
        yield dispatcher
    finally:
        await dispatcher.close()


def get_conversation_engine(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
) -> SmsConversationEngine:
    return SmsConversationEngine(session_factory, dispatcher, settings.public_base_url)


def get_grading_engine(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
) -> GradingCascadeEngine:
    return GradingCascadeEngine(
        session_factory,
        dispatcher,
        settings.public_base_url,
        SettlementConfig(
            push_points=settings.push_points,
            token_conversion_rate=settings.token_conversion_rate,
        ),
    )


def get_pack_scheduler(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
    conversation: Annotated[SmsConversationEngine, Depends(get_conversation_engine)],
) -> PackScheduler:
    return PackScheduler(
        session_factory,
        dispatcher,
        conversation,
        SchedulerConfig(
            public_base_url=settings.public_base_url,
            default_pack_open_template=settings.default_pack_open_template,
        ),
    )


# Type aliases for cleaner dependency injection
SessionDep = Annotated[AsyncSession, Depends(get_session)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AdminDep = Annotated[CurrentOperator, Depends(require_admin)]
CronKeyDep = Annotated[None, Depends(require_cron_key)]
DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
ConversationDep = Annotated[SmsConversationEngine, Depends(get_conversation_engine)]
GradingEngineDep = Annotated[GradingCascadeEngine, Depends(get_grading_engine)]
SchedulerDep = Annotated[PackScheduler, Depends(get_pack_scheduler)]
