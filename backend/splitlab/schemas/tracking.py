"""Visitor assignment and conversion schemas."""
from pydantic import BaseModel, Field
from typing import Any, Optional
from datetime import datetime
from uuid import UUID

from splitlab.models.ab_test import Variant


class AssignRequest(BaseModel):
    """Request a variant for a visitor."""

    visitor_id: str = Field(..., min_length=1, max_length=255)
    page: Optional[str] = Field(None, max_length=2048)
    user_agent: Optional[str] = Field(None, max_length=512)

    class Config:
        json_schema_extra = {
            "example": {
                "visitor_id": "v_8f14e45f",
                "page": "/quote/auto"
            }
        }


class AssignResponse(BaseModel):
    """Variant assignment, or in_experiment=false for an ineligible test."""

    in_experiment: bool
    test_id: Optional[UUID] = None
    variant: Optional[Variant] = None
    is_new_assignment: bool = False
    content: Any = None


class ConversionRequest(BaseModel):
    """Goal completion for a visitor."""

    visitor_id: str = Field(..., min_length=1, max_length=255)
    conversion_value: Optional[float] = Field(None, ge=0, description="Optional monetary value")


class ConversionResponse(BaseModel):
    """Whether the conversion was recorded (false for duplicates)."""

    recorded: bool


class AssignmentResponse(BaseModel):
    """Stored assignment."""

    test_id: UUID
    visitor_id: str
    variant: Variant
    assigned_at: datetime
    converted: bool
    converted_at: Optional[datetime] = None
    conversion_value: Optional[float] = None

    class Config:
        from_attributes = True
