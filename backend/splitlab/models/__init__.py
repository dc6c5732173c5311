"""Database models."""
from splitlab.models.ab_test import ABTest, ABTestStatus, AssignmentType, UrlMatchType, Variant
from splitlab.models.assignment import Assignment

__all__ = ["ABTest", "ABTestStatus", "AssignmentType", "UrlMatchType", "Variant", "Assignment"]
