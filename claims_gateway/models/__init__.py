from claims_gateway.models.approval import (
    ApprovalHistoryEntry,
    ApprovalRequest,
    ApprovalStatus,
    ExecutionResult,
    HistoryAction,
    RequestType,
)
from claims_gateway.models.weather import (
    ConsensusWeatherObservation,
    PayoutOutcome,
    Policy,
    PolicyTemplate,
    PolicyThresholdRule,
)

__all__ = [
    "ApprovalHistoryEntry",
    "ApprovalRequest",
    "ApprovalStatus",
    "ExecutionResult",
    "HistoryAction",
    "RequestType",
    "ConsensusWeatherObservation",
    "PayoutOutcome",
    "Policy",
    "PolicyTemplate",
    "PolicyThresholdRule",
]
