"""Visitor assignment and conversion endpoints."""
from fastapi import APIRouter, Depends, Request
from typing import List
from uuid import UUID

from splitlab.api.deps import get_lifecycle, get_repository
from splitlab.schemas.tracking import (
    AssignRequest,
    AssignResponse,
    AssignmentResponse,
    ConversionRequest,
    ConversionResponse,
)
from splitlab.services.assignment import AssignmentEngine, VisitorInfo
from splitlab.services.conversions import ConversionRecorder
from splitlab.services.lifecycle import TestLifecycleManager
from splitlab.services.repository import SqlAlchemyRepository

router = APIRouter()


@router.post("/ab-tests/{test_id}/assign", response_model=AssignResponse)
async def assign_visitor(
    test_id: UUID,
    assign_request: AssignRequest,
    request: Request,
    repository: SqlAlchemyRepository = Depends(get_repository)
):
    """
    Get the variant a visitor should see.

    A missing or inactive test is not an error: the response says
    in_experiment=false and the caller renders its default page.
    """
    visitor_info = VisitorInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=assign_request.user_agent or request.headers.get("user-agent"),
        page=assign_request.page
    )

    assignment = AssignmentEngine(repository).assign(test_id, assign_request.visitor_id, visitor_info)
    if assignment is None:
        return AssignResponse(in_experiment=False)

    return AssignResponse(
        in_experiment=True,
        test_id=assignment.test_id,
        variant=assignment.variant,
        is_new_assignment=assignment.is_new_assignment,
        content=assignment.content
    )


@router.post("/ab-tests/{test_id}/conversions", response_model=ConversionResponse)
async def record_conversion(
    test_id: UUID,
    conversion_request: ConversionRequest,
    repository: SqlAlchemyRepository = Depends(get_repository),
    lifecycle: TestLifecycleManager = Depends(get_lifecycle)
):
    """Record a goal completion. Duplicates return recorded=false."""
    recorder = ConversionRecorder(repository, lifecycle)
    recorded = recorder.record_conversion(
        test_id,
        conversion_request.visitor_id,
        conversion_request.conversion_value
    )
    return ConversionResponse(recorded=recorded)


@router.get("/visitors/{visitor_id}/assignments", response_model=List[AssignmentResponse])
async def get_visitor_assignments(
    visitor_id: str,
    repository: SqlAlchemyRepository = Depends(get_repository)
):
    """All tests a visitor has been assigned to."""
    return AssignmentEngine(repository).get_visitor_assignments(visitor_id)
