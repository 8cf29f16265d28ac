"""API routers for the approval workflow engine."""

from . import approvals
from . import health

__all__ = [
    "approvals",
    "health",
]
