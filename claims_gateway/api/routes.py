"""REST API routes for the approval workflow and automatic payouts.

Workflow errors raised by the services (InvalidArgument, NotFound,
Unauthorized, InvalidState, LedgerFailure) are translated into structured
error responses by ``claims_gateway.core.errors``.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from claims_gateway.api.deps import caller_org, get_engine, get_orchestrator, to_msp_id
from claims_gateway.api.schemas import (
    ApprovalAction,
    ApprovalCreate,
    ApprovalHistoryResponse,
    ApprovalListResponse,
    ErrorResponse,
    ExecuteRequest,
    ExecutionResponse,
    PayoutOutcomeResponse,
)
from claims_gateway.core.errors import InvalidArgument
from claims_gateway.core.serialization import encode_args
from claims_gateway.models.approval import ApprovalRequest
from claims_gateway.models.weather import ConsensusWeatherObservation
from claims_gateway.services.approval_engine import ApprovalWorkflowEngine
from claims_gateway.services.payout_orchestrator import PayoutOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid argument"},
    403: {"model": ErrorResponse, "description": "Organization not in the required set"},
    404: {"model": ErrorResponse, "description": "Approval request not found"},
    409: {"model": ErrorResponse, "description": "Not valid in the current status"},
}


def _acting_org(body: ApprovalAction, header_org: str | None) -> str:
    if body.org and body.org.strip():
        return to_msp_id(body.org)
    if header_org:
        return header_org
    raise InvalidArgument("org is required (request body 'org' or X-User-Org header)")


# ── Approvals ─────────────────────────────────────────────────────────────────


@router.post(
    "/approvals",
    tags=["approvals"],
    response_model=ApprovalRequest,
    status_code=status.HTTP_201_CREATED,
    responses={400: _ERRORS[400]},
    summary="Open a multi-organization approval request",
)
async def create_approval(
    body: ApprovalCreate,
    header_org: str | None = Depends(caller_org),
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalRequest:
    return await engine.create(
        request_id=body.request_id,
        request_type=body.request_type,
        target_contract=body.target_contract,
        target_operation=body.target_operation,
        arguments=encode_args(body.arguments),
        required_orgs=[to_msp_id(org) if org.strip() else org for org in body.required_orgs],
        metadata=body.metadata,
        created_by=header_org or "",
    )


@router.get(
    "/approvals",
    tags=["approvals"],
    response_model=ApprovalListResponse,
    summary="List approval requests, newest first",
)
async def list_approvals(
    status_filter: str | None = Query(default=None, alias="status", description="PENDING, APPROVED, REJECTED or EXECUTED"),
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalListResponse:
    items = await engine.list(status_filter)
    return ApprovalListResponse(items=items, count=len(items))


@router.get(
    "/approvals/{request_id}",
    tags=["approvals"],
    response_model=ApprovalRequest,
    responses={404: _ERRORS[404]},
    summary="Get an approval request",
)
async def get_approval(
    request_id: str,
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalRequest:
    return await engine.get(request_id)


@router.get(
    "/approvals/{request_id}/history",
    tags=["approvals"],
    response_model=ApprovalHistoryResponse,
    responses={404: _ERRORS[404]},
    summary="Audit trail of an approval request",
)
async def get_approval_history(
    request_id: str,
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalHistoryResponse:
    entries = await engine.history(request_id)
    return ApprovalHistoryResponse(request_id=request_id, entries=entries, count=len(entries))


@router.post(
    "/approvals/{request_id}/approve",
    tags=["approvals"],
    response_model=ApprovalRequest,
    responses=_ERRORS,
    summary="Approve on behalf of one required organization",
)
async def approve(
    request_id: str,
    body: ApprovalAction,
    header_org: str | None = Depends(caller_org),
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalRequest:
    org = _acting_org(body, header_org)
    return await engine.approve(request_id, org, body.reason or "Approved")


@router.post(
    "/approvals/{request_id}/reject",
    tags=["approvals"],
    response_model=ApprovalRequest,
    responses=_ERRORS,
    summary="Reject on behalf of one required organization",
    description="Under the default policy a single rejection is a veto: the request becomes REJECTED.",
)
async def reject(
    request_id: str,
    body: ApprovalAction,
    header_org: str | None = Depends(caller_org),
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ApprovalRequest:
    org = _acting_org(body, header_org)
    return await engine.reject(request_id, org, body.reason or "")


@router.post(
    "/approvals/{request_id}/execute",
    tags=["approvals"],
    response_model=ExecutionResponse,
    responses={
        **_ERRORS,
        502: {"model": ErrorResponse, "description": "Ledger rejected the operation; request stays APPROVED"},
    },
    summary="Execute an approved request against the ledger",
)
async def execute(
    request_id: str,
    body: ExecuteRequest | None = None,
    header_org: str | None = Depends(caller_org),
    engine: ApprovalWorkflowEngine = Depends(get_engine),
) -> ExecutionResponse:
    executed_by = header_org
    if body is not None and body.executed_by and body.executed_by.strip():
        executed_by = to_msp_id(body.executed_by)
    outcome = await engine.execute(request_id, executed_by=executed_by)
    return ExecutionResponse(
        request=outcome.request, result=outcome.result, warnings=outcome.warnings
    )


# ── Weather consensus ─────────────────────────────────────────────────────────


@router.post(
    "/weather/consensus",
    tags=["payouts"],
    response_model=PayoutOutcomeResponse,
    responses={502: {"model": ErrorResponse, "description": "Active policies could not be loaded"}},
    summary="Process a weather consensus and trigger automatic payouts",
    description=(
        "Checks every active policy in the observed location against its template "
        "thresholds. Each breached threshold triggers a claim and a payout from the "
        "premium pool. Per-policy failures are reported in `errors` and do not stop "
        "the run."
    ),
)
async def process_consensus(
    body: ConsensusWeatherObservation,
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
) -> PayoutOutcomeResponse:
    outcome = await orchestrator.process_consensus(body)
    logger.info(
        "Consensus for %s processed: %d claims triggered",
        body.location, len(outcome.claims_triggered),
    )
    return PayoutOutcomeResponse(
        location=body.location,
        timestamp=body.timestamp,
        policies_checked=outcome.policies_checked,
        thresholds_breached=outcome.thresholds_breached,
        claims_triggered=outcome.claims_triggered,
        errors=outcome.errors,
    )
