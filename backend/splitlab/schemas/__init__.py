"""Pydantic schemas for request/response validation."""
from splitlab.schemas.ab_test import ABTestCreate, ABTestResponse, StopTestRequest
from splitlab.schemas.analysis import (
    ABTestResultsResponse, BayesianResponse, SampleSizeResponse, SequentialResponse
)
from splitlab.schemas.tracking import (
    AssignRequest, AssignResponse, ConversionRequest, ConversionResponse, AssignmentResponse
)

__all__ = [
    "ABTestCreate", "ABTestResponse", "StopTestRequest",
    "ABTestResultsResponse", "BayesianResponse", "SampleSizeResponse", "SequentialResponse",
    "AssignRequest", "AssignResponse", "ConversionRequest", "ConversionResponse", "AssignmentResponse",
]
