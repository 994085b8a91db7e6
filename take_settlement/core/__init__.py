"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    get_session_factory,
    init_db,
)
from .dependencies import (
    AdminDep,
    ConversationDep,
    CronKeyDep,
    CurrentOperator,
    DispatcherDep,
    GradingEngineDep,
    SchedulerDep,
    SessionDep,
    SessionFactoryDep,
    get_conversation_engine,
    get_current_operator,
    get_dispatcher,
    get_grading_engine,
    get_pack_scheduler,
    require_admin,
    require_cron_key,
)
from .security import (
    create_access_token,
    decode_token,
    verify_shared_secret,
    verify_twilio_signature,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "get_session_factory",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentOperator",
    "get_current_operator",
    "get_dispatcher",
    "get_conversation_engine",
    "get_grading_engine",
    "get_pack_scheduler",
    "require_admin",
    "require_cron_key",
    "AdminDep",
    "ConversationDep",
    "CronKeyDep",
    "DispatcherDep",
    "GradingEngineDep",
    "SchedulerDep",
    "SessionDep",
    "SessionFactoryDep",
    # Security
    "create_access_token",
    "decode_token",
    "verify_shared_secret",
    "verify_twilio_signature",
]
