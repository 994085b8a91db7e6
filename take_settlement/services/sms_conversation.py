"""
SMS Conversation Engine: Sequential prop answering over SMS.

Session lifecycle:
    (no session) --seed_sessions--> active --last answer--> completed

Sessions are only created when a pack opens; an inbound text never starts
one. Each inbound message is recorded in the inbox, and a session only
advances in the same transaction as a successful take write.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import (
    InboxMessage,
    InboxStatus,
    Pack,
    Prop,
    SmsSession,
    SmsSessionStatus,
    TakeSide,
    TakeSource,
)
from .errors import SettlementError
from .messages import closing_message, prop_prompt, seed_prompt
from .notification_service import (
    DispatchReport,
    DispatchResult,
    NotificationDispatcher,
    OutboundSms,
)
from .take_ingestion import TakeIngestionService

logger = logging.getLogger(__name__)

# First standalone A or B, any case ("yeah" does not count)
_SIDE_TOKEN = re.compile(r"\b([ab])\b", re.IGNORECASE)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


class InboundOutcome(str, Enum):
    """What an inbound text did."""

    IGNORED = "ignored"
    NO_SESSION = "no_session"
    DUPLICATE = "duplicate"
    REPROMPTED = "reprompted"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    ERROR = "error"


_INBOX_STATUS = {
    InboundOutcome.IGNORED: InboxStatus.IGNORED,
    InboundOutcome.NO_SESSION: InboxStatus.NO_SESSION,
    InboundOutcome.DUPLICATE: InboxStatus.DUPLICATE,
    InboundOutcome.REPROMPTED: InboxStatus.REPROMPTED,
    InboundOutcome.ADVANCED: InboxStatus.PROCESSED,
    InboundOutcome.COMPLETED: InboxStatus.COMPLETED,
    InboundOutcome.ERROR: InboxStatus.ERROR,
}

# Inbox states that mean a message already wrote its take
_APPLIED_STATUSES = (InboxStatus.PROCESSED, InboxStatus.COMPLETED)


@dataclass
class InboundSms:
    """Normalised inbound webhook payload."""
    from_number: str | None
    body: str | None
    message_sid: str | None
    to_number: str | None = None


@dataclass
class InboundResult:
    outcome: InboundOutcome
    session_id: UUID | None = None
    take_id: UUID | None = None
    prop_index: int | None = None
    reply: DispatchResult | None = None
    error: str | None = None


@dataclass
class SeedReport:
    """Sessions created for a pack opening and the first prompts sent."""
    pack_id: UUID
    created: int = 0
    skipped: int = 0
    dispatch: DispatchReport = field(default_factory=DispatchReport)


def parse_reply(body: str | None) -> TakeSide | None:
    """Return the first standalone A/B token in ``body``."""
    match = _SIDE_TOKEN.search(body or "")
    if not match:
        return None
    return TakeSide(match.group(1).upper())


async def load_pack_props(session: AsyncSession, pack_id: UUID) -> list[Prop]:
    query = (
        select(Prop)
        .where(Prop.pack_id == pack_id)
        .order_by(Prop.order_index, Prop.created_at)
    )
    return list((await session.execute(query)).scalars().all())


# =============================================================================
# SMS CONVERSATION ENGINE
# =============================================================================


class SmsConversationEngine:
    """Drives per-phone, per-pack SMS sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        public_base_url: str,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._public_base_url = public_base_url

    # =========================================================================
    # SEEDING (called by the scheduler when a pack opens)
    # =========================================================================

    async def seed_sessions(self, pack_id: UUID, phones: list[str]) -> SeedReport:
        """
        Start a session at prop index 0 for every phone without an active
        session on this pack, then send each new session its first prompt.
        """
        report = SeedReport(pack_id=pack_id)

        async with self._session_factory() as db:
            pack = await db.get(Pack, pack_id)
            if pack is None:
                logger.error(f"Cannot seed SMS sessions: pack {pack_id} not found")
                return report

            props = await load_pack_props(db, pack_id)
            if not props:
                logger.warning(f"Pack {pack.url} has no props; no SMS sessions seeded")
                return report

            existing = await db.execute(
                select(SmsSession.phone).where(
                    SmsSession.pack_id == pack_id,
                    SmsSession.status == SmsSessionStatus.ACTIVE,
                    SmsSession.phone.in_(phones),
                )
            )
            active_phones = set(existing.scalars().all())

            new_phones = []
            for phone in dict.fromkeys(phones):
                if phone in active_phones:
                    report.skipped += 1
                    continue
                db.add(SmsSession(phone=phone, pack_id=pack_id, current_prop_index=0))
                new_phones.append(phone)

            await db.commit()

        report.created = len(new_phones)
        body = seed_prompt(pack, props[0], len(props))
        report.dispatch = await self._dispatcher.send_many(
            [OutboundSms(to=phone, body=body) for phone in new_phones]
        )

        logger.info(
            f"Seeded {report.created} SMS sessions for pack {pack.url} "
            f"(skipped={report.skipped}, prompt failures={report.dispatch.failed})"
        )
        return report

    # =========================================================================
    # INBOUND
    # =========================================================================

    async def handle_inbound(self, message: InboundSms) -> InboundResult:
        """
        Process one inbound text.

        Flow:
        1. Record the message; drop malformed payloads
        2. Skip redeliveries of any message that already wrote a take
        3. Find the active session for the sender
        4. Parse A/B; re-prompt when absent
        5. Write the take and advance the session atomically
        6. After commit, send the next prompt or the closing message
        """
        if not message.from_number or not message.message_sid:
            logger.warning(
                f"Ignoring malformed inbound SMS (from={message.from_number!r}, "
                f"sid={message.message_sid!r})"
            )
            await self._record(message, InboundOutcome.IGNORED)
            return InboundResult(outcome=InboundOutcome.IGNORED)

        async with self._session_factory() as db:
            # Idempotency guard for webhook redelivery, across sessions
            applied = await self._find_applied(db, message.message_sid)
            if applied is not None:
                logger.info(f"Duplicate inbound {message.message_sid}; already applied")
                self._add_inbox(db, message, InboundOutcome.DUPLICATE, applied.pack_id)
                await db.commit()
                return InboundResult(outcome=InboundOutcome.DUPLICATE)

            sms_session = await self._find_active_session(db, message.from_number)
            if sms_session is None:
                self._add_inbox(db, message, InboundOutcome.NO_SESSION)
                await db.commit()
                return InboundResult(outcome=InboundOutcome.NO_SESSION)

            session_id = sms_session.id
            pack_id = sms_session.pack_id
            index = sms_session.current_prop_index

            if sms_session.last_inbound_message_id == message.message_sid:
                self._add_inbox(db, message, InboundOutcome.DUPLICATE, pack_id)
                await db.commit()
                return InboundResult(
                    outcome=InboundOutcome.DUPLICATE,
                    session_id=session_id,
                    prop_index=index,
                )

            props = await load_pack_props(db, pack_id)
            if index >= len(props):
                logger.error(
                    f"Session {session_id} points at prop {index} but pack has {len(props)}"
                )
                self._add_inbox(db, message, InboundOutcome.ERROR, pack_id)
                await db.commit()
                return InboundResult(
                    outcome=InboundOutcome.ERROR,
                    session_id=session_id,
                    prop_index=index,
                    error="prop index out of range",
                )

            prop = props[index]
            total = len(props)
            side = parse_reply(message.body)

            if side is None:
                self._add_inbox(db, message, InboundOutcome.REPROMPTED, pack_id)
                await db.commit()
                reply = await self._dispatcher.send(
                    message.from_number, prop_prompt(prop, index + 1, total)
                )
                return InboundResult(
                    outcome=InboundOutcome.REPROMPTED,
                    session_id=session_id,
                    prop_index=index,
                    reply=reply,
                )

            try:
                submission = await TakeIngestionService(db).submit_take(
                    prop_id=prop.id,
                    side=side,
                    identity=message.from_number,
                    source=TakeSource.SMS,
                )
            except (SettlementError, SQLAlchemyError) as e:
                await db.rollback()
                logger.error(
                    f"SMS take failed for session {session_id} prop index {index}: {e}"
                )
                await self._record(message, InboundOutcome.ERROR, pack_id)
                return InboundResult(
                    outcome=InboundOutcome.ERROR,
                    session_id=session_id,
                    prop_index=index,
                    error=str(e),
                )

            next_index = index + 1
            finished = next_index >= total
            advanced = await db.execute(
                update(SmsSession)
                .where(
                    SmsSession.id == session_id,
                    SmsSession.status == SmsSessionStatus.ACTIVE,
                    SmsSession.current_prop_index == index,
                )
                .values(
                    current_prop_index=index if finished else next_index,
                    status=SmsSessionStatus.COMPLETED if finished else SmsSessionStatus.ACTIVE,
                    last_inbound_message_id=message.message_sid,
                    updated_at=func.now(),
                )
                .returning(SmsSession.id)
                .execution_options(synchronize_session=False)
            )
            if advanced.scalar_one_or_none() is None:
                # Another delivery of this message advanced the session first
                await db.rollback()
                logger.info(
                    f"Session {session_id} already advanced past {index}; discarding take"
                )
                await self._record(message, InboundOutcome.DUPLICATE, pack_id)
                return InboundResult(
                    outcome=InboundOutcome.DUPLICATE,
                    session_id=session_id,
                    prop_index=index,
                )

            outcome = InboundOutcome.COMPLETED if finished else InboundOutcome.ADVANCED
            self._add_inbox(db, message, outcome, pack_id)

            if finished:
                pack = await db.get(Pack, pack_id)
                reply_body = closing_message(pack, self._public_base_url)
            else:
                reply_body = prop_prompt(props[next_index], next_index + 1, total)

            await db.commit()

        reply = await self._dispatcher.send(message.from_number, reply_body)
        if not reply.success:
            logger.warning(f"Reply to {message.from_number} failed: {reply.error}")

        return InboundResult(
            outcome=outcome,
            session_id=session_id,
            take_id=submission.take_id,
            prop_index=index if finished else next_index,
            reply=reply,
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _find_applied(self, db: AsyncSession, message_sid: str) -> InboxMessage | None:
        """Earlier delivery of this sid that wrote a take, if any."""
        query = (
            select(InboxMessage)
            .where(
                InboxMessage.message_sid == message_sid,
                InboxMessage.webhook_status.in_(_APPLIED_STATUSES),
            )
            .limit(1)
        )
        return (await db.execute(query)).scalar_one_or_none()

    async def _find_active_session(
        self,
        db: AsyncSession,
        phone: str,
    ) -> SmsSession | None:
        query = (
            select(SmsSession)
            .where(
                SmsSession.phone == phone,
                SmsSession.status == SmsSessionStatus.ACTIVE,
            )
            .order_by(SmsSession.created_at.desc())
            .limit(1)
        )
        return (await db.execute(query)).scalar_one_or_none()

    def _add_inbox(
        self,
        db: AsyncSession,
        message: InboundSms,
        outcome: InboundOutcome,
        pack_id: UUID | None = None,
    ) -> None:
        db.add(
            InboxMessage(
                message_sid=message.message_sid,
                from_number=message.from_number,
                to_number=message.to_number,
                body=message.body or "",
                webhook_status=_INBOX_STATUS[outcome],
                pack_id=pack_id,
            )
        )

    async def _record(
        self,
        message: InboundSms,
        outcome: InboundOutcome,
        pack_id: UUID | None = None,
    ) -> None:
        """Record the inbox row in its own transaction."""
        async with self._session_factory() as db:
            self._add_inbox(db, message, outcome, pack_id)
            await db.commit()
