"""
Pack Scheduler: Time-windowed opening and closing of packs.

Each tick:
1. Opens packs whose window has started (status -> active)
2. Closes packs whose window has ended (status -> live, meaning closed to
   new takes and awaiting grading)
3. Announces every pack this tick opened, by link or by SMS conversation

Transitions are conditional updates that return only the rows they
changed, so re-running a tick never re-announces a pack. The scheduler
has no timer of its own; a cron job or the HTTP trigger calls ``tick``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import DropStrategy, Pack, PackStatus
from .messages import pack_open_message, resolve_pack_open_template
from .notification_service import NotificationDispatcher, OutboundSms
from .recipients import resolve_pack_open_recipients
from .sms_conversation import SmsConversationEngine

logger = logging.getLogger(__name__)

_NOT_OPENABLE = [PackStatus.ACTIVE, PackStatus.LIVE, PackStatus.GRADED, PackStatus.ARCHIVED]
_NOT_CLOSABLE = [PackStatus.LIVE, PackStatus.GRADED, PackStatus.ARCHIVED]


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SchedulerConfig:
    public_base_url: str
    default_pack_open_template: str = "Pack {packTitle} is open! {timeLeft} {packUrl}"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class PackOpenSummary:
    pack_id: UUID
    pack_url: str
    drop_strategy: DropStrategy
    recipients: int = 0
    notified: int = 0
    failed: int = 0
    sessions_seeded: int = 0


@dataclass
class TickResult:
    opened_count: int = 0
    live_count: int = 0
    opened: list[PackOpenSummary] = field(default_factory=list)
    closed_pack_ids: list[UUID] = field(default_factory=list)

    @property
    def notified(self) -> int:
        return sum(p.notified for p in self.opened)

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.opened)

    @property
    def sessions_seeded(self) -> int:
        return sum(p.sessions_seeded for p in self.opened)


# =============================================================================
# PACK SCHEDULER
# =============================================================================


class PackScheduler:
    """Opens and closes packs and announces openings."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        conversation: SmsConversationEngine,
        config: SchedulerConfig,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._conversation = conversation
        self._config = config

    async def tick(self, now: datetime | None = None) -> TickResult:
        now = now or datetime.now(timezone.utc)
        result = TickResult()

        # Transitions commit before anything is sent
        opened_ids = await self._open_due_packs(now)
        result.closed_pack_ids = await self._close_due_packs(now)
        result.opened_count = len(opened_ids)
        result.live_count = len(result.closed_pack_ids)

        for pack_id in opened_ids:
            try:
                summary = await self._announce_open(pack_id, now)
            except SQLAlchemyError as e:
                logger.error(f"Failed to announce opening of pack {pack_id}: {e}")
                continue
            if summary:
                result.opened.append(summary)

        logger.info(
            f"Scheduler tick at {now.isoformat()}: opened={result.opened_count}, "
            f"live={result.live_count}, notified={result.notified}, "
            f"sessions={result.sessions_seeded}, failed={result.failed}"
        )
        return result

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _open_due_packs(self, now: datetime) -> list[UUID]:
        stmt = (
            update(Pack)
            .where(
                Pack.open_time.is_not(None),
                Pack.open_time <= now,
                or_(Pack.close_time.is_(None), Pack.close_time > now),
                Pack.status.not_in(_NOT_OPENABLE),
            )
            .values(status=PackStatus.ACTIVE, updated_at=now)
            .returning(Pack.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            ids = list((await db.execute(stmt)).scalars().all())
            await db.commit()
        return ids

    async def _close_due_packs(self, now: datetime) -> list[UUID]:
        stmt = (
            update(Pack)
            .where(
                Pack.close_time.is_not(None),
                Pack.close_time <= now,
                Pack.status.not_in(_NOT_CLOSABLE),
            )
            .values(status=PackStatus.LIVE, updated_at=now)
            .returning(Pack.id)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            ids = list((await db.execute(stmt)).scalars().all())
            await db.commit()
        return ids

    # =========================================================================
    # ANNOUNCEMENTS
    # =========================================================================

    async def _announce_open(self, pack_id: UUID, now: datetime) -> PackOpenSummary | None:
        async with self._session_factory() as db:
            pack = await db.get(Pack, pack_id)
            if pack is None:
                return None
            recipients = await resolve_pack_open_recipients(db, pack)

            body = None
            if pack.drop_strategy == DropStrategy.LINK:
                template = await resolve_pack_open_template(
                    db, pack.league, self._config.default_pack_open_template
                )
                body = pack_open_message(template, pack, self._config.public_base_url, now)

        summary = PackOpenSummary(
            pack_id=pack.id,
            pack_url=pack.url,
            drop_strategy=pack.drop_strategy,
            recipients=len(recipients),
        )
        if not recipients:
            logger.info(f"Pack {pack.url} opened with no recipients")
            return summary

        phones = [r.phone for r in recipients]

        if pack.drop_strategy == DropStrategy.SMS_CONVERSATION:
            seed = await self._conversation.seed_sessions(pack.id, phones)
            summary.sessions_seeded = seed.created
            summary.notified = seed.dispatch.sent
            summary.failed = seed.dispatch.failed
        else:
            report = await self._dispatcher.send_many(
                [OutboundSms(to=phone, body=body) for phone in phones]
            )
            summary.notified = report.sent
            summary.failed = report.failed

        logger.info(
            f"Pack {pack.url} opened ({pack.drop_strategy.value}): "
            f"recipients={summary.recipients}, notified={summary.notified}, "
            f"failed={summary.failed}"
        )
        return summary
