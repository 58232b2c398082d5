"""Approval request model — a proposal to run one ledger operation once a
fixed set of organizations has signed off.

Lifecycle:

    PENDING ──approve (quorum reached)──▶ APPROVED ──execute──▶ EXECUTED
       │
       └──reject──▶ REJECTED

REJECTED and EXECUTED are terminal. Requests are never deleted; together with
their history entries they form the audit record.
"""

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from claims_gateway.core.errors import InvalidState


class RequestType(str, enum.Enum):
    FARMER_REGISTRATION = "FARMER_REGISTRATION"
    POLICY_CREATION = "POLICY_CREATION"
    CLAIM_APPROVAL = "CLAIM_APPROVAL"
    POOL_WITHDRAWAL = "POOL_WITHDRAWAL"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"


class HistoryAction(str, enum.Enum):
    CREATE = "CREATE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    EXECUTE = "EXECUTE"


ALLOWED_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}),
    ApprovalStatus.APPROVED: frozenset({ApprovalStatus.EXECUTED}),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXECUTED: frozenset(),
}


class ApprovalRequest(BaseModel):
    request_id: str
    request_type: RequestType
    target_contract: str
    target_operation: str
    arguments: list[str]
    required_orgs: list[str]
    approvals: dict[str, bool] = Field(default_factory=dict)
    rejections: dict[str, str] = Field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    metadata: dict[str, str] = Field(default_factory=dict)

    created_by: str
    created_at: datetime
    updated_at: datetime
    executed_by: str | None = None
    executed_at: datetime | None = None
    executed_tx_ref: str | None = None

    def has_quorum(self) -> bool:
        """True once every required organization has an approval entry."""
        return all(self.approvals.get(org, False) for org in self.required_orgs)

    def transition_to(self, new_status: ApprovalStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidState(
                f"Request {self.request_id} cannot move from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} | {self.request_type.value} "
            f"{self.target_contract}.{self.target_operation} status={self.status.value} "
            f"approvals={len(self.approvals)}/{len(self.required_orgs)}>"
        )


class ApprovalHistoryEntry(BaseModel):
    request_id: str
    action: HistoryAction
    organization: str | None = None
    actor: str | None = None
    reason: str | None = None
    timestamp: datetime


class ExecutionResult(BaseModel):
    """What a successful execute returns: the updated request, the ledger's
    payload for the target operation, and any non-fatal hook warnings."""

    request: ApprovalRequest
    result: Any = None
    warnings: list[str] = Field(default_factory=list)
