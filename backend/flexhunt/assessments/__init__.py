"""Proctored assessments: recruiter-authored tests taken by invited candidates."""

from .service import AssessmentService

__all__ = ["AssessmentService"]
