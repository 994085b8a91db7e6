"""
Take API Routes: Web widget take submission and live tallies.

1. POST /takes - Record a take (overwrites the identity's previous take)
2. GET /props/{id}/counts - Side tallies computed from the store
"""

import logging
from uuid import UUID

from fastapi import APIRouter, status

from ..core import SessionDep
from ..models import TakeSource
from ..schemas import ErrorResponse, PropCountsResponse, TakeRequest, TakeResponse
from ..services.take_ingestion import TakeIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["takes"])


@router.post(
    "/takes",
    response_model=TakeResponse,
    status_code=status.HTTP_200_OK,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def submit_take(request: TakeRequest, session: SessionDep) -> TakeResponse:
    """
    Record a take from the web widget.

    Any previous take by the same identity on this prop is marked
    overwritten; the counts in the response exclude overwritten takes.
    Errors (missing prop, closed prop, bad side, lost race) are turned
    into ErrorResponse bodies by the application error handler.
    """
    service = TakeIngestionService(session)
    submission = await service.submit_take(
        prop_id=request.prop_id,
        side=request.side,
        identity=request.identity,
        source=TakeSource.WEB,
        receipt_id=request.receipt_id,
    )
    return TakeResponse(
        take_id=submission.take_id,
        side_a_count=submission.side_a_count,
        side_b_count=submission.side_b_count,
    )


@router.get(
    "/props/{prop_id}/counts",
    response_model=PropCountsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_prop_counts(prop_id: UUID, session: SessionDep) -> PropCountsResponse:
    """Current side tallies for a prop."""
    counts = await TakeIngestionService(session).get_counts(prop_id)
    return PropCountsResponse(side_a_count=counts.side_a, side_b_count=counts.side_b)
