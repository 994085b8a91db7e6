"""Per-pack leaderboard aggregated from latest takes."""

from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Pack, Take, TakeResult, TakeStatus
from .errors import PackNotFoundError


@dataclass
class LeaderboardRow:
    identity: str
    takes: int
    points: int
    tokens: int
    won: int
    lost: int
    pending: int
    pushed: int


def _count_result(result: TakeResult):
    return func.sum(case((Take.result == result, 1), else_=0))


async def pack_leaderboard(session: AsyncSession, pack_url: str) -> list[LeaderboardRow]:
    """Tally latest takes per identity, highest points first."""
    pack_id = await session.scalar(select(Pack.id).where(Pack.url == pack_url))
    if pack_id is None:
        raise PackNotFoundError(f"Pack {pack_url} not found")

    points = func.coalesce(func.sum(Take.points), 0)
    query = (
        select(
            Take.identity,
            func.count(Take.id),
            points.label("points"),
            func.coalesce(func.sum(Take.tokens), 0),
            _count_result(TakeResult.WON),
            _count_result(TakeResult.LOST),
            _count_result(TakeResult.PENDING),
            _count_result(TakeResult.PUSH),
        )
        .where(Take.pack_id == pack_id, Take.status == TakeStatus.LATEST)
        .group_by(Take.identity)
        .order_by(points.desc(), Take.identity)
    )
    rows = (await session.execute(query)).all()

    return [
        LeaderboardRow(
            identity=identity,
            takes=takes,
            points=int(pts),
            tokens=int(tokens),
            won=int(won or 0),
            lost=int(lost or 0),
            pending=int(pending or 0),
            pushed=int(pushed or 0),
        )
        for identity, takes, pts, tokens, won, lost, pending, pushed in rows
    ]
