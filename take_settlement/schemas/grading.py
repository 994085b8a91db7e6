"""Schemas for manual and formula grading."""

from typing import Any, Literal
from uuid import UUID

from pydantic import Field

from ..services.grading_formulas import GameSnapshot
from .base import SettlementBaseModel


# =============================================================================
# MANUAL GRADING
# =============================================================================


class PropGradeItem(SettlementBaseModel):
    id: UUID
    status: Literal["gradedA", "gradedB", "push"]
    result: str | None = Field(default=None, max_length=2000)


class GradePropsRequest(SettlementBaseModel):
    updates: list[PropGradeItem] = Field(..., min_length=1)


class PropGradeResultSchema(SettlementBaseModel):
    prop_id: UUID
    success: bool
    error: str | None = None
    takes_updated: int = 0


class PackGradingSummarySchema(SettlementBaseModel):
    pack_id: UUID
    pack_url: str | None = None
    total_props: int
    ungraded_props: int
    transitioned: bool
    notified: int
    failed: int


class GradePropsResponse(SettlementBaseModel):
    success: bool
    notified_count: int
    per_pack_summary: list[PackGradingSummarySchema]
    per_prop_results: list[PropGradeResultSchema]


# =============================================================================
# FORMULA GRADING
# =============================================================================


class FormulaGradeRequest(SettlementBaseModel):
    snapshot: GameSnapshot
    dry_run: bool = False
    override_params: dict[str, Any] | None = None


class FormulaGradeResponse(SettlementBaseModel):
    success: bool = True
    prop_status: str
    prop_result: str
    dry_run: bool
    grading: GradePropsResponse | None = None
