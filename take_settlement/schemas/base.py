"""Base schemas and common types for the Take Settlement API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class SettlementBaseModel(BaseModel):
    """Base model with common configuration (camelCase on the wire)."""

    model_config = ConfigDict(
        from_attributes=True,  # Build from service dataclasses and ORM rows
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None
