"""Detection, risk gating, execution and rollback for the arbitrage engine."""

from __future__ import annotations

from .detector import OpportunityDetector, find_simple, find_triangular, rank
from .loop import ScanLoop
from .orchestrator import ExecutionOrchestrator
from .orders import (
    ConfirmationTimeout,
    ExecutionError,
    OrderPlacementError,
    OrderRejected,
    ProfitabilityAbort,
    SessionInFlight,
)
from .risk import RiskValidator
from .rollback import RollbackCoordinator

__all__ = [
    "OpportunityDetector",
    "find_simple",
    "find_triangular",
    "rank",
    "RiskValidator",
    "ExecutionOrchestrator",
    "RollbackCoordinator",
    "ScanLoop",
    "ExecutionError",
    "OrderPlacementError",
    "ConfirmationTimeout",
    "OrderRejected",
    "ProfitabilityAbort",
    "SessionInFlight",
]
