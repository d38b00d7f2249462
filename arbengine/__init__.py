"""Core package for cross-venue and triangular arbitrage detection and execution."""

from __future__ import annotations

from .config import Settings
from .engine import (
    ExecutionOrchestrator,
    OpportunityDetector,
    RiskValidator,
    RollbackCoordinator,
    ScanLoop,
)
from .models import (
    Opportunity,
    PricePoint,
    RiskAssessment,
    Session,
    SessionStatus,
    TradeResult,
)

__all__ = [
    "Settings",
    "PricePoint",
    "Opportunity",
    "RiskAssessment",
    "Session",
    "SessionStatus",
    "TradeResult",
    "OpportunityDetector",
    "RiskValidator",
    "ExecutionOrchestrator",
    "RollbackCoordinator",
    "ScanLoop",
]
