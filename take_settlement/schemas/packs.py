"""Schemas for scheduler jobs and pack views."""

from .base import SettlementBaseModel


class PackStatusJobResponse(SettlementBaseModel):
    success: bool = True
    opened_count: int
    live_count: int
    notified: int = 0
    failed: int = 0
    sessions_seeded: int = 0


class LeaderboardEntry(SettlementBaseModel):
    identity: str
    takes: int
    points: int
    tokens: int
    won: int
    lost: int
    pending: int
    pushed: int


class LeaderboardResponse(SettlementBaseModel):
    pack_url: str
    entries: list[LeaderboardEntry]
