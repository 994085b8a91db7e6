"""
Grading Admin Routes: Settle props, takes and packs.

1. POST /admin/grading/props - Manual grading of one or more props
2. POST /admin/grading/props/{id}/formula - Auto grading from game data

Both require an admin bearer token.
"""

import logging
from uuid import UUID

from fastapi import APIRouter

from ..core import AdminDep, GradingEngineDep
from ..models import PropStatus
from ..schemas import (
    ErrorResponse,
    FormulaGradeRequest,
    FormulaGradeResponse,
    GradePropsRequest,
    GradePropsResponse,
    PackGradingSummarySchema,
    PropGradeResultSchema,
)
from ..services.grading_engine import GradingSummary, PropGradeUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/grading", tags=["grading"])


def _to_response(summary: GradingSummary) -> GradePropsResponse:
    return GradePropsResponse(
        success=summary.all_succeeded,
        notified_count=summary.notified_count,
        per_pack_summary=[
            PackGradingSummarySchema.model_validate(p) for p in summary.per_pack_summary
        ],
        per_prop_results=[
            PropGradeResultSchema.model_validate(r) for r in summary.per_prop_results
        ],
    )


@router.post(
    "/props",
    response_model=GradePropsResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def grade_props(
    request: GradePropsRequest,
    operator: AdminDep,
    engine: GradingEngineDep,
) -> GradePropsResponse:
    """
    Grade props and cascade the outcome to takes and packs.

    Each prop is settled independently; ``perPropResults`` reports the
    ones that failed. ``success`` is false if any prop failed.
    """
    logger.info(f"Operator {operator.subject} grading {len(request.updates)} props")

    summary = await engine.grade_props(
        [
            PropGradeUpdate(
                prop_id=item.id,
                new_status=PropStatus(item.status),
                result_value=item.result,
            )
            for item in request.updates
        ]
    )
    return _to_response(summary)


@router.post(
    "/props/{prop_id}/formula",
    response_model=FormulaGradeResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def grade_prop_by_formula(
    prop_id: UUID,
    request: FormulaGradeRequest,
    operator: AdminDep,
    engine: GradingEngineDep,
) -> FormulaGradeResponse:
    """Evaluate the prop's configured formula against a game snapshot."""
    logger.info(
        f"Operator {operator.subject} formula-grading prop {prop_id} (dry_run={request.dry_run})"
    )

    result = await engine.grade_prop_by_formula(
        prop_id,
        request.snapshot,
        dry_run=request.dry_run,
        override_params=request.override_params,
    )
    return FormulaGradeResponse(
        success=result.grading.all_succeeded if result.grading else True,
        prop_status=result.status.value,
        prop_result=result.result_text,
        dry_run=result.dry_run,
        grading=_to_response(result.grading) if result.grading else None,
    )
