"""Take Settlement API Schemas.

Schemas are organized by domain:
- base: Base model configuration, error responses
- takes: Take submission and tallies
- grading: Manual and formula grading
- packs: Scheduler job results and leaderboards
"""

from .base import ErrorDetail, ErrorResponse, SettlementBaseModel
from .grading import (
    FormulaGradeRequest,
    FormulaGradeResponse,
    GradePropsRequest,
    GradePropsResponse,
    PackGradingSummarySchema,
    PropGradeItem,
    PropGradeResultSchema,
)
from .packs import LeaderboardEntry, LeaderboardResponse, PackStatusJobResponse
from .takes import PropCountsResponse, TakeRequest, TakeResponse

__all__ = [
    # Base
    "SettlementBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Takes
    "TakeRequest",
    "TakeResponse",
    "PropCountsResponse",
    # Grading
    "PropGradeItem",
    "GradePropsRequest",
    "GradePropsResponse",
    "PropGradeResultSchema",
    "PackGradingSummarySchema",
    "FormulaGradeRequest",
    "FormulaGradeResponse",
    # Packs
    "PackStatusJobResponse",
    "LeaderboardEntry",
    "LeaderboardResponse",
]
