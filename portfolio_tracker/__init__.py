from .critical_path import CriticalPathResult, CyclicDependencyError, compute_critical_path
from .engine import (
    competency_group_utilization,
    forecast_from_bookings,
    fte_timeline,
    global_resource_utilization,
    project_fte,
    resource_utilization,
    total_available_fte,
)
from .health import project_health
from .io_utils import load_state, parse_state, state_to_document
from .models import EngineConfig, PortfolioState

__all__ = [
    "CriticalPathResult",
    "CyclicDependencyError",
    "EngineConfig",
    "PortfolioState",
    "competency_group_utilization",
    "compute_critical_path",
    "forecast_from_bookings",
    "fte_timeline",
    "global_resource_utilization",
    "load_state",
    "parse_state",
    "project_fte",
    "project_health",
    "resource_utilization",
    "state_to_document",
    "total_available_fte",
]
