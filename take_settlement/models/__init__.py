"""SQLAlchemy ORM Models for the take settlement store."""

from .base import Base, TimestampMixin, UUIDMixin
from .models import (
    # Enums
    CLOSED_PACK_STATUSES,
    GRADED_PROP_STATUSES,
    DropStrategy,
    GradingMode,
    InboxStatus,
    PackStatus,
    PropStatus,
    SmsSessionStatus,
    TakeResult,
    TakeSide,
    TakeSource,
    TakeStatus,
    # Reference data
    Event,
    NotificationPreference,
    Profile,
    Team,
    packs_events,
    props_teams,
    # Packs & props
    Pack,
    Prop,
    # Takes
    Take,
    # SMS
    InboxMessage,
    SmsRule,
    SmsSession,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # Enums
    "CLOSED_PACK_STATUSES",
    "GRADED_PROP_STATUSES",
    "DropStrategy",
    "GradingMode",
    "InboxStatus",
    "PackStatus",
    "PropStatus",
    "SmsSessionStatus",
    "TakeResult",
    "TakeSide",
    "TakeSource",
    "TakeStatus",
    # Reference data
    "Event",
    "NotificationPreference",
    "Profile",
    "Team",
    "packs_events",
    "props_teams",
    # Packs & props
    "Pack",
    "Prop",
    # Takes
    "Take",
    # SMS
    "InboxMessage",
    "SmsRule",
    "SmsSession",
]
