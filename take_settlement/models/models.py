"""SQLAlchemy ORM Models for the take settlement store.

Status and enumeration values are persisted verbatim; the UI and admin
tools branch on them, so they must never be renamed.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, partial_unique_index, value_enum

# =============================================================================
# ENUMS
# =============================================================================


class PropStatus(str, PyEnum):
    OPEN = "open"
    GRADED_A = "gradedA"
    GRADED_B = "gradedB"
    PUSH = "push"


GRADED_PROP_STATUSES = (PropStatus.GRADED_A, PropStatus.GRADED_B, PropStatus.PUSH)


class GradingMode(str, PyEnum):
    MANUAL = "manual"
    AUTO = "auto"


class TakeSide(str, PyEnum):
    A = "A"
    B = "B"


class TakeStatus(str, PyEnum):
    LATEST = "latest"
    OVERWRITTEN = "overwritten"


class TakeResult(str, PyEnum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    PUSH = "push"


class TakeSource(str, PyEnum):
    WEB = "web"
    SMS = "sms"


class PackStatus(str, PyEnum):
    DRAFT = "draft"
    COMING_SOON = "coming-soon"
    ACTIVE = "active"
    LIVE = "live"  # Closed to new takes, awaiting grading
    GRADED = "graded"
    ARCHIVED = "archived"


# Packs in these states no longer accept takes
CLOSED_PACK_STATUSES = (PackStatus.LIVE, PackStatus.GRADED, PackStatus.ARCHIVED)


class DropStrategy(str, PyEnum):
    LINK = "link"
    SMS_CONVERSATION = "sms_conversation"


class SmsSessionStatus(str, PyEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


class InboxStatus(str, PyEnum):
    RECEIVED = "received"
    PROCESSED = "processed"
    REPROMPTED = "reprompted"
    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    NO_SESSION = "no_session"
    IGNORED = "ignored"
    ERROR = "error"


# =============================================================================
# ASSOCIATION TABLES
# =============================================================================


packs_events = Table(
    "packs_events",
    Base.metadata,
    Column("pack_id", ForeignKey("packs.id", ondelete="CASCADE"), primary_key=True),
    Column("event_id", ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
)

props_teams = Table(
    "props_teams",
    Base.metadata,
    Column("prop_id", ForeignKey("props.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
)


# =============================================================================
# COLLABORATOR-OWNED REFERENCE DATA (read-only to the engine)
# =============================================================================


class Team(Base, UUIDMixin):
    """A team that profiles can follow."""

    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(20))
    league: Mapped[str | None] = mapped_column(String(50))


class Event(Base, UUIDMixin):
    """A scheduled game between two teams."""

    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    league: Mapped[str | None] = mapped_column(String(50))
    event_time: Mapped[datetime | None] = mapped_column()
    home_team_id: Mapped[UUID | None] = mapped_column(ForeignKey("teams.id"))
    away_team_id: Mapped[UUID | None] = mapped_column(ForeignKey("teams.id"))


class Profile(Base, UUIDMixin):
    """A participant profile. Owned by the profile/preferences collaborator."""

    __tablename__ = "profiles"

    mobile_e164: Mapped[str | None] = mapped_column(String(32), index=True)
    sms_opt_out_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    preferences: Mapped[list["NotificationPreference"]] = relationship(
        back_populates="profile"
    )


class NotificationPreference(Base, UUIDMixin):
    """Opt-in for a notification category, scoped by league and/or team."""

    __tablename__ = "notification_preferences"

    profile_id: Mapped[UUID] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    league: Mapped[str | None] = mapped_column(String(50))
    team_id: Mapped[UUID | None] = mapped_column(ForeignKey("teams.id"))
    opted_in: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    profile: Mapped["Profile"] = relationship(back_populates="preferences")

    __table_args__ = (
        Index("idx_notification_preferences_category", "category", "league"),
    )


# =============================================================================
# PACKS & PROPS
# =============================================================================


class Pack(Base, UUIDMixin, TimestampMixin):
    """An ordered collection of props with its own schedule."""

    __tablename__ = "packs"

    url: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    league: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[PackStatus] = mapped_column(
        value_enum(PackStatus, "pack_status"),
        default=PackStatus.DRAFT,
        nullable=False,
    )
    open_time: Mapped[datetime | None] = mapped_column()
    close_time: Mapped[datetime | None] = mapped_column()
    drop_strategy: Mapped[DropStrategy] = mapped_column(
        value_enum(DropStrategy, "drop_strategy"),
        default=DropStrategy.LINK,
        nullable=False,
    )
    event_id: Mapped[UUID | None] = mapped_column(ForeignKey("events.id"))

    props: Mapped[list["Prop"]] = relationship(
        back_populates="pack",
        order_by="Prop.order_index",
    )
    event: Mapped[Event | None] = relationship(foreign_keys=[event_id])
    events: Mapped[list[Event]] = relationship(secondary=packs_events)

    __table_args__ = (
        Index("idx_packs_status_open_time", "status", "open_time"),
        Index("idx_packs_status_close_time", "status", "close_time"),
    )


class Prop(Base, UUIDMixin):
    """A binary prediction question inside a pack."""

    __tablename__ = "props"

    pack_id: Mapped[UUID] = mapped_column(
        ForeignKey("packs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prop_short: Mapped[str] = mapped_column(Text, nullable=False)
    side_a_label: Mapped[str] = mapped_column(String(255), default="A", nullable=False)
    side_b_label: Mapped[str] = mapped_column(String(255), default="B", nullable=False)
    side_a_value: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    side_b_value: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[PropStatus] = mapped_column(
        value_enum(PropStatus, "prop_status"),
        default=PropStatus.OPEN,
        nullable=False,
    )
    open_time: Mapped[datetime | None] = mapped_column()
    close_time: Mapped[datetime | None] = mapped_column()
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    graded_at: Mapped[datetime | None] = mapped_column()
    result: Mapped[str | None] = mapped_column(Text)
    side_a_percent: Mapped[float | None] = mapped_column(Float)
    side_b_percent: Mapped[float | None] = mapped_column(Float)

    # Auto grading configuration
    grading_mode: Mapped[GradingMode] = mapped_column(
        value_enum(GradingMode, "grading_mode"),
        default=GradingMode.MANUAL,
        nullable=False,
    )
    formula_key: Mapped[str | None] = mapped_column(String(50))
    formula_params: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    pack: Mapped["Pack"] = relationship(back_populates="props")
    teams: Mapped[list["Team"]] = relationship(secondary=props_teams)

    def label_for(self, side: TakeSide) -> str:
        return self.side_a_label if side == TakeSide.A else self.side_b_label

    def value_for(self, side: TakeSide) -> int:
        return self.side_a_value if side == TakeSide.A else self.side_b_value


# =============================================================================
# TAKES
# =============================================================================


class Take(Base, UUIDMixin):
    """One identity's recorded choice of side on a prop.

    Takes are never deleted; a newer take for the same (prop, identity)
    flips the previous one to ``overwritten``.
    """

    __tablename__ = "takes"

    prop_id: Mapped[UUID] = mapped_column(
        ForeignKey("props.id", ondelete="CASCADE"), nullable=False
    )
    pack_id: Mapped[UUID | None] = mapped_column(ForeignKey("packs.id"), index=True)
    side: Mapped[TakeSide] = mapped_column(
        value_enum(TakeSide, "take_side"), nullable=False
    )
    identity: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[TakeStatus] = mapped_column(
        value_enum(TakeStatus, "take_status"),
        default=TakeStatus.LATEST,
        nullable=False,
    )
    result: Mapped[TakeResult] = mapped_column(
        value_enum(TakeResult, "take_result"),
        default=TakeResult.PENDING,
        nullable=False,
    )
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source: Mapped[TakeSource] = mapped_column(
        value_enum(TakeSource, "take_source"),
        default=TakeSource.WEB,
        nullable=False,
    )
    popularity: Mapped[float | None] = mapped_column(Float)
    receipt_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    prop: Mapped["Prop"] = relationship()

    __table_args__ = (
        # At most one latest take per (prop, identity)
        partial_unique_index(
            "uq_takes_latest_per_identity",
            "prop_id",
            "identity",
            where="status = 'latest'",
        ),
        Index("idx_takes_prop_status", "prop_id", "status"),
        Index("idx_takes_identity", "identity"),
    )


# =============================================================================
# SMS CONVERSATION STATE
# =============================================================================


class SmsSession(Base, UUIDMixin, TimestampMixin):
    """Per-phone, per-pack cursor for sequential SMS answering."""

    __tablename__ = "sms_sessions"

    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    pack_id: Mapped[UUID] = mapped_column(
        ForeignKey("packs.id", ondelete="CASCADE"), nullable=False
    )
    current_prop_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SmsSessionStatus] = mapped_column(
        value_enum(SmsSessionStatus, "sms_session_status"),
        default=SmsSessionStatus.ACTIVE,
        nullable=False,
    )
    last_inbound_message_id: Mapped[str | None] = mapped_column(String(64))

    pack: Mapped["Pack"] = relationship()

    __table_args__ = (
        CheckConstraint("current_prop_index >= 0", name="prop_index_non_negative"),
        partial_unique_index(
            "uq_sms_sessions_active_phone_pack",
            "phone",
            "pack_id",
            where="status = 'active'",
        ),
    )


class SmsRule(Base, UUIDMixin):
    """Outbound SMS template for a trigger, optionally scoped to a league."""

    __tablename__ = "sms_rules"

    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    league: Mapped[str | None] = mapped_column(String(50))
    template: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class InboxMessage(Base, UUIDMixin):
    """Every inbound SMS webhook, kept for operators."""

    __tablename__ = "inbox_messages"

    message_sid: Mapped[str | None] = mapped_column(String(64), index=True)
    from_number: Mapped[str | None] = mapped_column(String(32))
    to_number: Mapped[str | None] = mapped_column(String(32))
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    webhook_status: Mapped[InboxStatus] = mapped_column(
        value_enum(InboxStatus, "inbox_status"),
        default=InboxStatus.RECEIVED,
        nullable=False,
    )
    pack_id: Mapped[UUID | None] = mapped_column(ForeignKey("packs.id"))
    received_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )
