"""Business logic services for take settlement."""

from .errors import (
    ConcurrencyError,
    FormulaInputError,
    FormulaNotConfiguredError,
    InvalidSideError,
    PackNotFoundError,
    PropNotFoundError,
    PropNotOpenError,
    SettlementError,
)
from .grading_engine import (
    FormulaGradeResult,
    GradingCascadeEngine,
    GradingSummary,
    PackGradingSummary,
    PropGradeResult,
    PropGradeUpdate,
    SettlementConfig,
)
from .grading_formulas import FORMULA_REGISTRY, FormulaOutcome, GameSnapshot, evaluate_formula
from .leaderboard import LeaderboardRow, pack_leaderboard
from .notification_service import (
    DispatchReport,
    DispatchResult,
    LogTransport,
    NotificationDispatcher,
    OutboundSms,
    SmsTransport,
    TwilioTransport,
    build_transport,
)
from .pack_scheduler import PackScheduler, SchedulerConfig, TickResult
from .sms_conversation import InboundOutcome, InboundResult, InboundSms, SmsConversationEngine
from .take_ingestion import SideCounts, TakeIngestionService, TakeSubmission

__all__ = [
    # Errors
    "SettlementError",
    "PropNotFoundError",
    "PropNotOpenError",
    "PackNotFoundError",
    "InvalidSideError",
    "ConcurrencyError",
    "FormulaNotConfiguredError",
    "FormulaInputError",
    # Takes
    "TakeIngestionService",
    "TakeSubmission",
    "SideCounts",
    # SMS
    "SmsConversationEngine",
    "InboundSms",
    "InboundResult",
    "InboundOutcome",
    # Grading
    "GradingCascadeEngine",
    "GradingSummary",
    "PackGradingSummary",
    "PropGradeResult",
    "PropGradeUpdate",
    "FormulaGradeResult",
    "SettlementConfig",
    "FORMULA_REGISTRY",
    "FormulaOutcome",
    "GameSnapshot",
    "evaluate_formula",
    # Scheduler
    "PackScheduler",
    "SchedulerConfig",
    "TickResult",
    # Notifications
    "NotificationDispatcher",
    "SmsTransport",
    "TwilioTransport",
    "LogTransport",
    "OutboundSms",
    "DispatchResult",
    "DispatchReport",
    "build_transport",
    # Leaderboard
    "pack_leaderboard",
    "LeaderboardRow",
]
