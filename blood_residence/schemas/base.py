"""Base schemas and error bodies for the portal API."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class PortalBaseModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,  # read straight from ORM rows
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(PortalBaseModel):
    """Error body of the /api routes."""

    error: str
    message: str
    details: list[dict[str, Any]] = []


class FunctionErrorResponse(PortalBaseModel):
    """Error body of the function endpoints: `{"error": ..., "details": ...}`."""

    error: str
    details: list[dict[str, Any]] | None = None
