"""
Take Ingestion: Records takes from every channel with overwrite semantics.

A take is never updated in place except to retire it:
- The previous latest take for (prop, identity) becomes ``overwritten``
- A new ``latest`` take is inserted in the same transaction
- Side tallies are always counted from the store, never cached
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    CLOSED_PACK_STATUSES,
    Pack,
    Prop,
    PropStatus,
    Take,
    TakeSide,
    TakeSource,
    TakeStatus,
)
from .errors import (
    ConcurrencyError,
    InvalidIdentityError,
    InvalidSideError,
    PropNotFoundError,
    PropNotOpenError,
)
from .messages import as_utc

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SideCounts:
    """Non-overwritten takes per side."""
    side_a: int = 0
    side_b: int = 0

    @property
    def total(self) -> int:
        return self.side_a + self.side_b

    def share_of(self, side: TakeSide) -> float:
        if self.total == 0:
            return 0.5
        chosen = self.side_a if side == TakeSide.A else self.side_b
        return chosen / self.total


@dataclass
class TakeSubmission:
    """Result of a successful take write."""
    take_id: UUID
    side_a_count: int
    side_b_count: int
    popularity: float


def parse_side(value: str | TakeSide) -> TakeSide:
    """Normalise user input into a TakeSide."""
    if isinstance(value, TakeSide):
        return value
    normalized = (value or "").strip().upper()
    try:
        return TakeSide(normalized)
    except ValueError:
        raise InvalidSideError(f"Side must be A or B, got {value!r}")


# =============================================================================
# TAKE INGESTION SERVICE
# =============================================================================


class TakeIngestionService:
    """
    Writes takes for the web widget and the SMS conversation.

    Guarantees:
    1. At most one ``latest`` take per (prop, identity)
    2. Validation failures perform no writes
    3. Counts returned reflect the store after the write
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def submit_take(
        self,
        prop_id: UUID,
        side: str | TakeSide,
        identity: str,
        source: TakeSource = TakeSource.WEB,
        receipt_id: str | None = None,
        now: datetime | None = None,
    ) -> TakeSubmission:
        """
        Record a take, retiring any previous latest take by the same identity.

        Flow:
        1. Validate side, then lock the prop row and check it still takes picks
        2. Mark the current latest take (if any) as overwritten
        3. Snapshot popularity of the chosen side
        4. INSERT the new latest take
        5. Recount sides

        The caller owns the transaction; nothing is committed here.
        """
        chosen = parse_side(side)
        if not identity:
            raise InvalidIdentityError("Identity is required")

        # Step 1: Lock the prop so writers for the same prop serialise
        prop = await self._get_prop_for_update(prop_id)
        await self._check_accepting(prop, as_utc(now) or datetime.now(timezone.utc))

        try:
            # Step 2: Retire the previous latest take
            await self._session.execute(
                update(Take)
                .where(
                    Take.prop_id == prop_id,
                    Take.identity == identity,
                    Take.status == TakeStatus.LATEST,
                )
                .values(status=TakeStatus.OVERWRITTEN)
            )

            # Step 3: Popularity before this take lands
            popularity = (await self.count_sides(prop_id)).share_of(chosen)

            # Step 4: Insert the new latest take
            take = Take(
                prop_id=prop_id,
                pack_id=prop.pack_id,
                side=chosen,
                identity=identity,
                status=TakeStatus.LATEST,
                source=source,
                popularity=popularity,
                receipt_id=receipt_id,
            )
            self._session.add(take)
            await self._session.flush()

        except IntegrityError as e:
            # The partial unique index caught a racing writer
            raise ConcurrencyError(f"Failed to record take: {e}")

        # Step 5: Read-time tally
        counts = await self.count_sides(prop_id)

        logger.info(
            f"Recorded {source.value} take {take.id} on prop {prop_id}: "
            f"side={chosen.value} (A={counts.side_a}, B={counts.side_b})"
        )

        return TakeSubmission(
            take_id=take.id,
            side_a_count=counts.side_a,
            side_b_count=counts.side_b,
            popularity=popularity,
        )

    async def count_sides(self, prop_id: UUID) -> SideCounts:
        """Count non-overwritten takes grouped by side."""
        query = (
            select(Take.side, func.count(Take.id))
            .where(
                Take.prop_id == prop_id,
                Take.status != TakeStatus.OVERWRITTEN,
            )
            .group_by(Take.side)
        )
        result = await self._session.execute(query)

        counts = SideCounts()
        for side, count in result.all():
            if side == TakeSide.A:
                counts.side_a = count
            elif side == TakeSide.B:
                counts.side_b = count
        return counts

    async def get_counts(self, prop_id: UUID) -> SideCounts:
        """Public tally for a prop; raises if the prop does not exist."""
        exists = await self._session.scalar(select(Prop.id).where(Prop.id == prop_id))
        if exists is None:
            raise PropNotFoundError(f"Prop {prop_id} not found")
        return await self.count_sides(prop_id)

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _check_accepting(self, prop: Prop, now: datetime) -> None:
        """Raise PropNotOpenError once the prop or its pack has closed."""
        if prop.status != PropStatus.OPEN:
            raise PropNotOpenError(f"Prop {prop.id} is {prop.status.value}, not open")

        close_time = as_utc(prop.close_time)
        if close_time is not None and close_time <= now:
            raise PropNotOpenError(f"Prop {prop.id} closed at {close_time.isoformat()}")

        pack_status = await self._session.scalar(
            select(Pack.status).where(Pack.id == prop.pack_id)
        )
        if pack_status in CLOSED_PACK_STATUSES:
            raise PropNotOpenError(
                f"Pack for prop {prop.id} is {pack_status.value}, not taking picks"
            )

    async def _get_prop_for_update(self, prop_id: UUID) -> Prop:
        query = select(Prop).where(Prop.id == prop_id).with_for_update()
        result = await self._session.execute(query)
        prop = result.scalar_one_or_none()

        if not prop:
            raise PropNotFoundError(f"Prop {prop_id} not found")
        return prop
