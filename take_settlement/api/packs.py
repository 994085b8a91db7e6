"""Pack Routes: Public per-pack views."""

from fastapi import APIRouter

from ..core import SessionDep
from ..schemas import ErrorResponse, LeaderboardEntry, LeaderboardResponse
from ..services.leaderboard import pack_leaderboard

router = APIRouter(prefix="/packs", tags=["packs"])


@router.get(
    "/{pack_url}/leaderboard",
    response_model=LeaderboardResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pack_leaderboard(pack_url: str, session: SessionDep) -> LeaderboardResponse:
    """Points per participant for a pack, highest first."""
    rows = await pack_leaderboard(session, pack_url)
    return LeaderboardResponse(
        pack_url=pack_url,
        entries=[LeaderboardEntry.model_validate(row) for row in rows],
    )
