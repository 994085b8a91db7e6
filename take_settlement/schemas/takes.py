"""Schemas for take submission and side tallies."""

from uuid import UUID

from pydantic import Field

from .base import SettlementBaseModel


class TakeRequest(SettlementBaseModel):
    """A take from the web widget."""

    prop_id: UUID
    side: str = Field(..., min_length=1, max_length=8, description="A or B")
    identity: str = Field(..., min_length=1, max_length=64, description="Phone in E.164")
    receipt_id: str | None = Field(default=None, max_length=64)


class TakeResponse(SettlementBaseModel):
    success: bool = True
    take_id: UUID
    side_a_count: int
    side_b_count: int


class PropCountsResponse(SettlementBaseModel):
    side_a_count: int
    side_b_count: int
