"""Shared API schemas."""

from gloria_service.core.schemas.problem_details import ProblemDetails

__all__ = ["ProblemDetails"]
