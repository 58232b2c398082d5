"""Approval workflow engine — the quorum state machine in front of ledger writes.

A request names one ledger operation and the organizations that must agree to
it. Each required organization approves or rejects; once all have approved
the request becomes executable, and executing it submits the operation to the
ledger exactly once.

Guarantees:
- Transitions follow PENDING → {APPROVED, REJECTED} and APPROVED → EXECUTED only.
- Every transition is computed from a fresh read of the stored request while
  holding that request's lock, so concurrent approvals cannot miss the quorum.
- Execute is serialized per request; a second execute sees EXECUTED and fails
  with InvalidState, so the target operation runs at most once.
- A ledger failure during execute leaves the request APPROVED for a later retry.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Callable

from claims_gateway.core.config import settings
from claims_gateway.core.errors import (
    InvalidArgument,
    InvalidState,
    LedgerFailure,
    NotFound,
    Unauthorized,
    WorkflowError,
)
from claims_gateway.models.approval import (
    ApprovalHistoryEntry,
    ApprovalRequest,
    ApprovalStatus,
    ExecutionResult,
    HistoryAction,
    RequestType,
)
from claims_gateway.services.approval_store import ApprovalStore
from claims_gateway.services.execution_hooks import HookRegistry, default_hooks
from claims_gateway.services.ledger_client import LedgerClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Rejection policies ────────────────────────────────────────────────────────


class RejectionPolicy(abc.ABC):
    """Decides whether the recorded rejections terminate a request."""

    @abc.abstractmethod
    def is_rejected(self, request: ApprovalRequest) -> bool:
        ...


class VetoRejectionPolicy(RejectionPolicy):
    """Any single rejection from a required organization rejects the request."""

    def is_rejected(self, request: ApprovalRequest) -> bool:
        return len(request.rejections) >= 1


class QuorumRejectionPolicy(RejectionPolicy):
    """The request is rejected once ``threshold`` organizations have rejected it."""

    def __init__(self, threshold: int):
        if threshold < 1:
            raise ValueError("rejection threshold must be at least 1")
        self.threshold = threshold

    def is_rejected(self, request: ApprovalRequest) -> bool:
        return len(request.rejections) >= self.threshold


def rejection_policy_for(quorum: int) -> RejectionPolicy:
    if quorum <= 1:
        return VetoRejectionPolicy()
    return QuorumRejectionPolicy(quorum)


# ── Engine ────────────────────────────────────────────────────────────────────


class ApprovalWorkflowEngine:
    def __init__(
        self,
        store: ApprovalStore,
        ledger: LedgerClient,
        *,
        rejection_policy: RejectionPolicy | None = None,
        hooks: HookRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._ledger = ledger
        self._rejection_policy = rejection_policy or VetoRejectionPolicy()
        self._hooks = hooks if hooks is not None else default_hooks()
        self._clock = clock
        # One lock per request id, dropped once no coroutine holds or awaits it.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ── Commands ──────────────────────────────────────────────────────────────

    async def create(
        self,
        request_id: str,
        request_type: RequestType | str,
        target_contract: str,
        target_operation: str,
        arguments: list[str],
        required_orgs: list[str],
        metadata: dict[str, str] | None = None,
        created_by: str = "",
    ) -> ApprovalRequest:
        """Open a new request in PENDING.

        Raises:
            InvalidArgument: on blank identifiers, an unknown request type,
                empty ``arguments`` or ``required_orgs``, non-string values,
                or a ``request_id`` that already exists.
        """
        if not request_id or not request_id.strip():
            raise InvalidArgument("request_id is required")
        if not target_contract or not target_operation:
            raise InvalidArgument("target_contract and target_operation are required")
        try:
            request_type = RequestType(request_type)
        except ValueError:
            valid = ", ".join(t.value for t in RequestType)
            raise InvalidArgument(f"Unknown request type {request_type!r}. Must be one of: {valid}")
        if not arguments:
            raise InvalidArgument("arguments must contain at least one value")
        if any(not isinstance(a, str) for a in arguments):
            raise InvalidArgument("arguments must all be strings")
        if not required_orgs:
            raise InvalidArgument("required_orgs must contain at least one organization")
        if any(not isinstance(o, str) or not o.strip() for o in required_orgs):
            raise InvalidArgument("required_orgs must be non-empty strings")
        metadata = dict(metadata or {})
        if any(not isinstance(k, str) or not isinstance(v, str) for k, v in metadata.items()):
            raise InvalidArgument("metadata keys and values must be strings")

        async with self._lock_for(request_id):
            if await self._store.get(request_id) is not None:
                raise InvalidArgument(f"Approval request {request_id} already exists")

            now = self._clock()
            request = ApprovalRequest(
                request_id=request_id,
                request_type=request_type,
                target_contract=target_contract,
                target_operation=target_operation,
                arguments=list(arguments),
                required_orgs=list(dict.fromkeys(required_orgs)),
                metadata=metadata,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            await self._store.add(
                request,
                self._entry(request, HistoryAction.CREATE, None, created_by, "Request created", now),
            )

        logger.info(
            "Created approval request %s (%s → %s.%s, required=%s)",
            request_id, request_type.value, target_contract, target_operation,
            ",".join(request.required_orgs),
        )
        return request

    async def approve(self, request_id: str, org: str, reason: str = "Approved") -> ApprovalRequest:
        """Record ``org``'s approval; moves to APPROVED once every required org has approved.

        Re-approval by the same organization succeeds without changing anything.
        """
        async with self._lock_for(request_id):
            request = await self._load(request_id)
            self._check_actionable(request, org)

            if org in request.rejections:
                raise InvalidState(
                    f"Organization {org} has already rejected request {request_id}"
                )
            if request.approvals.get(org):
                logger.info("Duplicate approval of %s by %s ignored", request_id, org)
                return request

            now = self._clock()
            request.approvals[org] = True
            request.updated_at = now
            if request.has_quorum():
                request.transition_to(ApprovalStatus.APPROVED)

            await self._store.save(
                request, self._entry(request, HistoryAction.APPROVE, org, org, reason, now)
            )

        logger.info(
            "Request %s approved by %s (%d/%d, status=%s)",
            request_id, org, len(request.approvals), len(request.required_orgs),
            request.status.value,
        )
        return request

    async def reject(self, request_id: str, org: str, reason: str) -> ApprovalRequest:
        """Record ``org``'s rejection; the rejection policy decides whether it is terminal."""
        if not reason or not reason.strip():
            raise InvalidArgument("A rejection reason is required")

        async with self._lock_for(request_id):
            request = await self._load(request_id)
            self._check_actionable(request, org)

            if request.approvals.get(org):
                raise InvalidState(
                    f"Organization {org} has already approved request {request_id}"
                )
            if org in request.rejections:
                logger.info("Duplicate rejection of %s by %s ignored", request_id, org)
                return request

            now = self._clock()
            request.rejections[org] = reason
            request.updated_at = now
            if self._rejection_policy.is_rejected(request):
                request.transition_to(ApprovalStatus.REJECTED)

            await self._store.save(
                request, self._entry(request, HistoryAction.REJECT, org, org, reason, now)
            )

        logger.info("Request %s rejected by %s: %s (status=%s)", request_id, org, reason, request.status.value)
        return request

    async def execute(self, request_id: str, executed_by: str | None = None) -> ExecutionResult:
        """Submit the approved operation to the ledger and mark the request EXECUTED.

        Raises:
            NotFound: unknown request.
            InvalidState: the request is not APPROVED (including already EXECUTED).
            LedgerFailure: the ledger rejected the write; the request stays APPROVED.
        """
        executor = executed_by or settings.default_org

        async with self._lock_for(request_id):
            request = await self._load(request_id)
            if request.status != ApprovalStatus.APPROVED:
                raise InvalidState(
                    f"Request {request_id} must be APPROVED before execution "
                    f"(status: {request.status.value})"
                )

            try:
                submission = await self._ledger.submit(
                    request.target_contract,
                    request.target_operation,
                    *request.arguments,
                    identity=executor,
                )
            except LedgerFailure as exc:
                logger.error("Execution of %s failed, request stays APPROVED: %s", request_id, exc)
                raise

            now = self._clock()
            request.transition_to(ApprovalStatus.EXECUTED)
            request.executed_by = executor
            request.executed_at = now
            request.executed_tx_ref = submission.transaction_id
            request.updated_at = now

            await self._store.save(
                request,
                self._entry(
                    request, HistoryAction.EXECUTE, executor, executor,
                    f"SUCCESS tx={submission.transaction_id}", now,
                ),
            )

        logger.info(
            "Executed %s → %s.%s (tx=%s)",
            request_id, request.target_contract, request.target_operation,
            request.executed_tx_ref,
        )
        warnings = await self._run_hooks(request)
        return ExecutionResult(request=request, result=submission.result, warnings=warnings)

    # ── Queries ───────────────────────────────────────────────────────────────

    async def get(self, request_id: str) -> ApprovalRequest:
        return await self._load(request_id)

    async def list(self, status: ApprovalStatus | str | None = None) -> list[ApprovalRequest]:
        if status is not None:
            try:
                status = ApprovalStatus(str(status).upper())
            except ValueError:
                valid = ", ".join(s.value for s in ApprovalStatus)
                raise InvalidArgument(f"Invalid status {status!r}. Must be one of: {valid}")
        return await self._store.list(status)

    async def history(self, request_id: str) -> list[ApprovalHistoryEntry]:
        await self._load(request_id)
        return await self._store.history(request_id)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _lock_for(self, request_id: str) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = self._locks[request_id] = asyncio.Lock()
        return lock

    async def _load(self, request_id: str) -> ApprovalRequest:
        request = await self._store.get(request_id)
        if request is None:
            raise NotFound(f"Approval request {request_id} does not exist")
        return request

    @staticmethod
    def _check_actionable(request: ApprovalRequest, org: str) -> None:
        if request.status != ApprovalStatus.PENDING:
            raise InvalidState(
                f"Request {request.request_id} is not pending (status: {request.status.value})"
            )
        if org not in request.required_orgs:
            raise Unauthorized(
                f"Organization {org} is not required to act on request {request.request_id}"
            )

    @staticmethod
    def _entry(
        request: ApprovalRequest,
        action: HistoryAction,
        organization: str | None,
        actor: str | None,
        reason: str | None,
        timestamp: datetime,
    ) -> ApprovalHistoryEntry:
        return ApprovalHistoryEntry(
            request_id=request.request_id,
            action=action,
            organization=organization,
            actor=actor,
            reason=reason,
            timestamp=timestamp,
        )

    async def _run_hooks(self, request: ApprovalRequest) -> list[str]:
        warnings: list[str] = []
        for hook in self._hooks.hooks_for(request.request_type):
            name = getattr(hook, "__name__", repr(hook))
            try:
                await hook(request, self._ledger)
            except Exception as exc:
                logger.warning(
                    "Post-execution hook %s failed for %s: %s", name, request.request_id, exc,
                    exc_info=not isinstance(exc, WorkflowError),
                )
                warnings.append(f"{name}: {exc}")
        return warnings
