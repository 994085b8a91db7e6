"""
Grading Cascade Engine: Propagates prop outcomes to takes and packs.

Cascade:
1. Prop: status, graded timestamp, result text, final side percentages
2. Takes: every latest take gets won/lost/push, points and tokens
3. Pack: once no prop is left open, the pack moves to ``graded`` exactly
   once and every participant is told

Each prop is graded in its own transaction and each pack is rolled up in
its own transaction, so one failure never blocks the rest of a batch.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import (
    GRADED_PROP_STATUSES,
    GradingMode,
    Pack,
    PackStatus,
    Prop,
    PropStatus,
    Take,
    TakeResult,
    TakeSide,
    TakeStatus,
)
from .errors import FormulaNotConfiguredError, PropNotFoundError, SettlementError
from .grading_formulas import GameSnapshot, evaluate_formula
from .messages import graded_message
from .notification_service import NotificationDispatcher, OutboundSms
from .take_ingestion import TakeIngestionService

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SettlementConfig:
    """Reward rules applied when takes are settled."""
    push_points: int = 100
    token_conversion_rate: float = 0.05


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class PropGradeUpdate:
    prop_id: UUID
    new_status: PropStatus
    result_value: str | None = None


@dataclass
class PropGradeResult:
    prop_id: UUID
    success: bool
    error: str | None = None
    takes_updated: int = 0
    pack_id: UUID | None = None


@dataclass
class PackGradingSummary:
    pack_id: UUID
    pack_url: str | None
    total_props: int
    ungraded_props: int
    transitioned: bool = False
    notified: int = 0
    failed: int = 0


@dataclass
class GradingSummary:
    notified_count: int = 0
    per_pack_summary: list[PackGradingSummary] = field(default_factory=list)
    per_prop_results: list[PropGradeResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.per_prop_results)


@dataclass
class FormulaGradeResult:
    prop_id: UUID
    status: PropStatus
    result_text: str
    dry_run: bool
    grading: GradingSummary | None = None


def settle_take(
    side: TakeSide,
    prop_status: PropStatus,
    prop: Prop,
    config: SettlementConfig,
) -> tuple[TakeResult, int, int]:
    """Return (result, points, tokens) for a take on a graded prop."""
    if prop_status == PropStatus.PUSH:
        result, points = TakeResult.PUSH, config.push_points
    else:
        winner = TakeSide.A if prop_status == PropStatus.GRADED_A else TakeSide.B
        if side == winner:
            result, points = TakeResult.WON, prop.value_for(side)
        else:
            result, points = TakeResult.LOST, 0

    tokens = math.floor(points * config.token_conversion_rate)
    return result, points, tokens


# =============================================================================
# GRADING CASCADE ENGINE
# =============================================================================


class GradingCascadeEngine:
    """
    Applies admin (or formula) grading decisions.

    Idempotent: re-grading a prop to the same status recomputes the same
    take results, and the pack transition guard only fires once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        public_base_url: str,
        config: SettlementConfig | None = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._public_base_url = public_base_url
        self._config = config or SettlementConfig()

    async def grade_props(self, updates: list[PropGradeUpdate]) -> GradingSummary:
        """Grade a batch of props, then roll up every pack they touch."""
        summary = GradingSummary()
        affected_packs: dict[UUID, None] = {}

        for grade_update in updates:
            result = await self._grade_prop_isolated(grade_update)
            summary.per_prop_results.append(result)
            if result.success and result.pack_id:
                affected_packs[result.pack_id] = None

        for pack_id in affected_packs:
            try:
                pack_summary = await self._rollup_pack(pack_id)
            except SQLAlchemyError as e:
                logger.error(f"Pack rollup failed for {pack_id}: {e}")
                continue
            summary.per_pack_summary.append(pack_summary)
            summary.notified_count += pack_summary.notified

        logger.info(
            f"Graded {sum(r.success for r in summary.per_prop_results)}/{len(updates)} props, "
            f"packs={len(summary.per_pack_summary)}, notified={summary.notified_count}"
        )
        return summary

    async def grade_prop_by_formula(
        self,
        prop_id: UUID,
        snapshot: GameSnapshot,
        dry_run: bool = False,
        override_params: dict | None = None,
    ) -> FormulaGradeResult:
        """
        Grade an auto-mode prop from game data.

        Stored params are merged with ``override_params`` before evaluation.
        A dry run evaluates only and writes nothing.
        """
        async with self._session_factory() as db:
            prop = await db.get(Prop, prop_id)
            if not prop:
                raise PropNotFoundError(f"Prop {prop_id} not found")
            if prop.grading_mode != GradingMode.AUTO:
                raise FormulaNotConfiguredError(f"Prop {prop_id} is not set to auto grading")
            formula_key = prop.formula_key
            params = {**(prop.formula_params or {}), **(override_params or {})}

        outcome = evaluate_formula(formula_key, params, snapshot)

        result = FormulaGradeResult(
            prop_id=prop_id,
            status=outcome.status,
            result_text=outcome.result_text,
            dry_run=dry_run,
        )
        if not dry_run:
            result.grading = await self.grade_props(
                [PropGradeUpdate(prop_id, outcome.status, outcome.result_text)]
            )
        return result

    # =========================================================================
    # PROP GRADING
    # =========================================================================

    async def _grade_prop_isolated(self, grade_update: PropGradeUpdate) -> PropGradeResult:
        try:
            async with self._session_factory() as db:
                result = await self._grade_prop(db, grade_update)
                await db.commit()
                return result
        except SettlementError as e:
            logger.warning(f"Could not grade prop {grade_update.prop_id}: {e}")
            return PropGradeResult(prop_id=grade_update.prop_id, success=False, error=str(e))
        except SQLAlchemyError as e:
            logger.error(f"Database error grading prop {grade_update.prop_id}: {e}")
            return PropGradeResult(
                prop_id=grade_update.prop_id, success=False, error="database_error"
            )

    async def _grade_prop(
        self,
        db: AsyncSession,
        grade_update: PropGradeUpdate,
    ) -> PropGradeResult:
        try:
            new_status = PropStatus(grade_update.new_status)
        except ValueError:
            raise SettlementError(f"Unknown prop status {grade_update.new_status!r}")
        if new_status not in GRADED_PROP_STATUSES:
            raise SettlementError(f"Cannot grade a prop to {new_status.value}")

        query = select(Prop).where(Prop.id == grade_update.prop_id).with_for_update()
        prop = (await db.execute(query)).scalar_one_or_none()
        if not prop:
            raise PropNotFoundError(f"Prop {grade_update.prop_id} not found")

        # Step 1: Prop outcome and final popularity
        counts = await TakeIngestionService(db).count_sides(prop.id)
        prop.status = new_status
        prop.graded_at = datetime.now(timezone.utc)
        if grade_update.result_value is not None:
            prop.result = grade_update.result_value
        prop.side_a_percent = counts.side_a / counts.total if counts.total else 0.0
        prop.side_b_percent = counts.side_b / counts.total if counts.total else 0.0

        # Step 2: Settle latest takes; overwritten takes are left alone
        takes = (
            await db.execute(
                select(Take).where(
                    Take.prop_id == prop.id,
                    Take.status == TakeStatus.LATEST,
                )
            )
        ).scalars().all()

        for take in takes:
            take.result, take.points, take.tokens = settle_take(
                take.side, new_status, prop, self._config
            )

        await db.flush()

        logger.info(
            f"Prop {prop.id} graded {new_status.value}: {len(takes)} takes settled"
        )
        return PropGradeResult(
            prop_id=prop.id,
            success=True,
            takes_updated=len(takes),
            pack_id=prop.pack_id,
        )

    # =========================================================================
    # PACK ROLLUP
    # =========================================================================

    async def _rollup_pack(self, pack_id: UUID) -> PackGradingSummary:
        async with self._session_factory() as db:
            total = await db.scalar(
                select(func.count(Prop.id)).where(Prop.pack_id == pack_id)
            )
            ungraded = await db.scalar(
                select(func.count(Prop.id)).where(
                    Prop.pack_id == pack_id,
                    Prop.status.not_in(GRADED_PROP_STATUSES),
                )
            )
            pack = await db.get(Pack, pack_id)

            summary = PackGradingSummary(
                pack_id=pack_id,
                pack_url=pack.url if pack else None,
                total_props=total or 0,
                ungraded_props=ungraded or 0,
            )
            if pack is None or summary.total_props == 0 or summary.ungraded_props > 0:
                return summary

            # Exactly-once transition guard
            transitioned = await db.execute(
                update(Pack)
                .where(
                    Pack.id == pack_id,
                    Pack.status.not_in([PackStatus.GRADED, PackStatus.ARCHIVED]),
                )
                .values(status=PackStatus.GRADED, updated_at=func.now())
                .returning(Pack.id)
                .execution_options(synchronize_session=False)
            )
            if transitioned.scalar_one_or_none() is None:
                return summary

            identities = (
                await db.execute(
                    select(Take.identity)
                    .where(
                        Take.pack_id == pack_id,
                        Take.status == TakeStatus.LATEST,
                    )
                    .distinct()
                )
            ).scalars().all()
            await db.commit()

        summary.transitioned = True
        logger.info(f"Pack {pack.url} graded; notifying {len(identities)} participants")

        body = graded_message(pack, self._public_base_url)
        report = await self._dispatcher.send_many(
            [OutboundSms(to=identity, body=body) for identity in identities]
        )
        summary.notified = report.sent
        summary.failed = report.failed
        return summary
