"""Background services started by pipeline stages."""

from .dashboard import DashboardService, EnsureResult, ServiceOutcome

__all__ = [
    "DashboardService",
    "EnsureResult",
    "ServiceOutcome",
]
