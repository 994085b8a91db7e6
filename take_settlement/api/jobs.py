"""
Job Trigger Routes: Externally scheduled work.

POST /jobs/pack-status runs one scheduler tick. It is protected by the
shared cron secret (X-Cron-Key) and is safe to call repeatedly.
"""

import logging

from fastapi import APIRouter

from ..core import CronKeyDep, SchedulerDep
from ..schemas import ErrorResponse, PackStatusJobResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "/pack-status",
    response_model=PackStatusJobResponse,
    responses={401: {"model": ErrorResponse}},
)
async def run_pack_status_job(
    _: CronKeyDep,
    scheduler: SchedulerDep,
) -> PackStatusJobResponse:
    """Open packs whose window started and close packs whose window ended."""
    result = await scheduler.tick()
    return PackStatusJobResponse(
        opened_count=result.opened_count,
        live_count=result.live_count,
        notified=result.notified,
        failed=result.failed,
        sessions_seeded=result.sessions_seeded,
    )
