"""Pydantic schemas for the REST API request/response models."""

from typing import Any

from pydantic import BaseModel, Field

from claims_gateway.models.approval import (
    ApprovalHistoryEntry,
    ApprovalRequest,
    RequestType,
)


# ── Approvals ─────────────────────────────────────────────────────────────────


class ApprovalCreate(BaseModel):
    """Request body for opening a new approval request."""

    request_id: str = Field(..., description="Caller-chosen unique id", examples=["REQ_FARMER_001"])
    request_type: RequestType
    target_contract: str = Field(..., description="Contract invoked on execution", examples=["farmer-cc"])
    target_operation: str = Field(..., description="Operation invoked on execution", examples=["RegisterFarmer"])
    arguments: list[Any] = Field(
        ...,
        description="Positional arguments, in order. Non-strings are encoded for the ledger.",
        examples=[["FARMER_001", "Somchai", 12.5]],
    )
    required_orgs: list[str] = Field(
        ..., description="Organizations that must all approve; plain names are mapped to MSP ids"
    )
    metadata: dict[str, str] = Field(default_factory=dict)


class ApprovalAction(BaseModel):
    """Body for approve/reject. ``org`` falls back to the X-User-Org header."""

    org: str | None = Field(default=None, examples=["Insurer1MSP"])
    reason: str | None = None


class ExecuteRequest(BaseModel):
    executed_by: str | None = Field(default=None, description="Executing organization")


class ApprovalListResponse(BaseModel):
    items: list[ApprovalRequest]
    count: int


class ApprovalHistoryResponse(BaseModel):
    request_id: str
    entries: list[ApprovalHistoryEntry]
    count: int


class ExecutionResponse(BaseModel):
    request: ApprovalRequest
    result: Any = None
    warnings: list[str] = Field(default_factory=list)


# ── Weather consensus ─────────────────────────────────────────────────────────


class PayoutOutcomeResponse(BaseModel):
    """Response from POST /weather/consensus."""

    location: str
    timestamp: str
    policies_checked: int
    thresholds_breached: int
    claims_triggered: list[str]
    errors: list[str]


class ErrorResponse(BaseModel):
    error: dict[str, Any]
