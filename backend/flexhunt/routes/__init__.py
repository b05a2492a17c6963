"""API routes."""

from .assessments import router as assessments_router
from .payments import router as payments_router

__all__ = [
    "payments_router",
    "assessments_router",
]
