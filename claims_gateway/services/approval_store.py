"""Persistence for approval requests and their audit history.

Two backends share one interface — add, save, get, list, history — so the
workflow engine does not care where requests live:

- ``InMemoryApprovalStore`` for development and tests.
- ``SqlApprovalStore`` on SQLAlchemy's async ORM.

A state change and the history entry recording it are always written together,
so callers never observe one without the other. Stores hand out copies;
mutating a returned request has no effect until it is saved.
"""

from __future__ import annotations

import abc
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from claims_gateway.core.database import session_scope
from claims_gateway.core.errors import InvalidArgument, NotFound
from claims_gateway.models.approval import (
    ApprovalHistoryEntry,
    ApprovalRequest,
    ApprovalStatus,
    HistoryAction,
    RequestType,
)
from claims_gateway.models.records import ApprovalHistoryRecord, ApprovalRequestRecord


class ApprovalStore(abc.ABC):
    @abc.abstractmethod
    async def add(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        """Persist a new request. Raises InvalidArgument if the id is taken."""

    @abc.abstractmethod
    async def save(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        """Replace an existing request and append its history entry."""

    @abc.abstractmethod
    async def get(self, request_id: str) -> ApprovalRequest | None:
        ...

    @abc.abstractmethod
    async def list(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        """Return requests newest first, optionally filtered by status."""

    @abc.abstractmethod
    async def history(self, request_id: str) -> list[ApprovalHistoryEntry]:
        """Return history entries oldest first."""


def _newest_first(requests: list[ApprovalRequest]) -> list[ApprovalRequest]:
    return sorted(requests, key=lambda r: r.created_at, reverse=True)


class InMemoryApprovalStore(ApprovalStore):
    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}
        self._history: dict[str, list[ApprovalHistoryEntry]] = {}

    async def add(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        if request.request_id in self._requests:
            raise InvalidArgument(f"Approval request {request.request_id} already exists")
        self._requests[request.request_id] = request.model_copy(deep=True)
        self._history[request.request_id] = [entry.model_copy()]

    async def save(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        if request.request_id not in self._requests:
            raise NotFound(f"Approval request {request.request_id} does not exist")
        self._requests[request.request_id] = request.model_copy(deep=True)
        self._history[request.request_id].append(entry.model_copy())

    async def get(self, request_id: str) -> ApprovalRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request is not None else None

    async def list(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        return _newest_first([
            r.model_copy(deep=True)
            for r in self._requests.values()
            if status is None or r.status == status
        ])

    async def history(self, request_id: str) -> list[ApprovalHistoryEntry]:
        return [e.model_copy() for e in self._history.get(request_id, [])]


# ── SQL backend ───────────────────────────────────────────────────────────────


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; everything is stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(row: ApprovalRequestRecord) -> ApprovalRequest:
    return ApprovalRequest(
        request_id=row.request_id,
        request_type=RequestType(row.request_type),
        target_contract=row.target_contract,
        target_operation=row.target_operation,
        arguments=list(row.arguments),
        required_orgs=list(row.required_orgs),
        approvals=dict(row.approvals or {}),
        rejections=dict(row.rejections or {}),
        status=ApprovalStatus(row.status),
        metadata=dict(row.metadata_ or {}),
        created_by=row.created_by,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        executed_by=row.executed_by,
        executed_at=_aware(row.executed_at),
        executed_tx_ref=row.executed_tx_ref,
    )


def _apply(row: ApprovalRequestRecord, request: ApprovalRequest) -> None:
    row.request_type = request.request_type.value
    row.target_contract = request.target_contract
    row.target_operation = request.target_operation
    row.arguments = list(request.arguments)
    row.required_orgs = list(request.required_orgs)
    row.approvals = dict(request.approvals)
    row.rejections = dict(request.rejections)
    row.metadata_ = dict(request.metadata)
    row.status = request.status.value
    row.created_by = request.created_by
    row.created_at = request.created_at
    row.updated_at = request.updated_at
    row.executed_by = request.executed_by
    row.executed_at = request.executed_at
    row.executed_tx_ref = request.executed_tx_ref


def _history_row(entry: ApprovalHistoryEntry) -> ApprovalHistoryRecord:
    return ApprovalHistoryRecord(
        request_id=entry.request_id,
        action=entry.action.value,
        organization=entry.organization,
        actor=entry.actor,
        reason=entry.reason,
        timestamp=entry.timestamp,
    )


class SqlApprovalStore(ApprovalStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        async with session_scope(self._session_factory) as session:
            if await session.get(ApprovalRequestRecord, request.request_id) is not None:
                raise InvalidArgument(f"Approval request {request.request_id} already exists")
            row = ApprovalRequestRecord(request_id=request.request_id)
            _apply(row, request)
            session.add(row)
            await session.flush()
            session.add(_history_row(entry))

    async def save(self, request: ApprovalRequest, entry: ApprovalHistoryEntry) -> None:
        async with session_scope(self._session_factory) as session:
            row = await session.get(ApprovalRequestRecord, request.request_id)
            if row is None:
                raise NotFound(f"Approval request {request.request_id} does not exist")
            _apply(row, request)
            session.add(_history_row(entry))

    async def get(self, request_id: str) -> ApprovalRequest | None:
        async with self._session_factory() as session:
            row = await session.get(ApprovalRequestRecord, request_id)
            return _to_domain(row) if row is not None else None

    async def list(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequestRecord).order_by(ApprovalRequestRecord.created_at.desc())
        if status is not None:
            stmt = stmt.where(ApprovalRequestRecord.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_domain(row) for row in result.scalars().all()]

    async def history(self, request_id: str) -> list[ApprovalHistoryEntry]:
        stmt = (
            select(ApprovalHistoryRecord)
            .where(ApprovalHistoryRecord.request_id == request_id)
            .order_by(ApprovalHistoryRecord.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                ApprovalHistoryEntry(
                    request_id=row.request_id,
                    action=HistoryAction(row.action),
                    organization=row.organization,
                    actor=row.actor,
                    reason=row.reason,
                    timestamp=_aware(row.timestamp),
                )
                for row in result.scalars().all()
            ]
