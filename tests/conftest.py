"""Shared test fixtures for the claims gateway test suite.

The ledger is replaced by ``FakeLedger``, an in-process LedgerClient that
records every call and answers policy/template reads from plain dicts shaped
like the ledger's JSON. Approval tests run against the in-memory store with a
stepping clock so timestamps are deterministic and strictly increasing.
SQL store tests use aiosqlite against a throwaway file.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from claims_gateway.core.errors import LedgerFailure
from claims_gateway.models.approval import RequestType
from claims_gateway.models.weather import ConsensusWeatherObservation, PolicyThresholdRule
from claims_gateway.services.approval_engine import ApprovalWorkflowEngine
from claims_gateway.services.approval_store import InMemoryApprovalStore
from claims_gateway.services.ledger_client import LedgerClient, LedgerSubmission


ORG_A = "Insurer1MSP"
ORG_B = "Insurer2MSP"
ORG_C = "CoopMSP"


# ── Fakes ─────────────────────────────────────────────────────────────────────


@dataclass
class LedgerCall:
    contract: str
    operation: str
    args: tuple[str, ...]
    identity: str | None


class FakeLedger(LedgerClient):
    """Records calls; serves ``policies`` and ``templates`` to the orchestrator."""

    def __init__(
        self,
        policies: list[dict[str, Any]] | None = None,
        templates: dict[str, dict[str, Any]] | None = None,
    ):
        self.policies: Any = policies if policies is not None else []
        self.templates = templates or {}
        self.evaluations: list[LedgerCall] = []
        self.submissions: list[LedgerCall] = []
        self.fail_policy_listing = False
        self.failing_templates: set[str] = set()
        self.fail_submit: Callable[[LedgerCall], bool] = lambda call: False
        self.submit_delay = 0.0
        self._tx_counter = 0

    async def evaluate(self, contract, operation, *args, identity=None):
        call = LedgerCall(contract, operation, tuple(args), identity)
        self.evaluations.append(call)
        if operation == "GetAllPolicies":
            if self.fail_policy_listing:
                raise LedgerFailure(503, "peer unavailable", f"{contract}.{operation}")
            return self.policies
        if operation == "GetTemplate":
            template_id = args[0]
            if template_id in self.failing_templates:
                raise LedgerFailure(500, f"template {template_id} read failed", f"{contract}.{operation}")
            return self.templates.get(template_id)
        return None

    async def submit(self, contract, operation, *args, identity=None):
        call = LedgerCall(contract, operation, tuple(args), identity)
        self.submissions.append(call)
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.fail_submit(call):
            raise LedgerFailure(500, "endorsement failure", f"{contract}.{operation}")
        self._tx_counter += 1
        return LedgerSubmission(
            result={"operation": operation, "args": list(args)},
            transaction_id=f"tx-{self._tx_counter:04d}",
        )

    def submitted(self, operation: str) -> list[LedgerCall]:
        return [c for c in self.submissions if c.operation == operation]


class StepClock:
    """Returns ``start``, ``start + step``, ``start + 2*step``… on successive calls."""

    def __init__(
        self,
        start: datetime = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now += self.step
        return value


# ── Factory helpers ───────────────────────────────────────────────────────────


def make_policy(
    policy_id: str = "POL_001",
    farmer_id: str = "FARMER_001",
    template_id: str = "TPL_RICE",
    farm_location: str = "Central, Bangkok",
    coverage_amount: float = 80000.0,
    status: str = "Active",
) -> dict[str, Any]:
    """A policy as the ledger returns it from GetAllPolicies."""
    return {
        "policyID": policy_id,
        "farmerID": farmer_id,
        "templateID": template_id,
        "farmLocation": farm_location,
        "coverageAmount": coverage_amount,
        "status": status,
    }


def make_rule(
    index_type: str = "Rainfall",
    operator: str = "<",
    threshold_value: float = 50.0,
    payout_percent: float = 60.0,
    severity: str = "Severe",
) -> dict[str, Any]:
    return {
        "indexType": index_type,
        "operator": operator,
        "thresholdValue": threshold_value,
        "payoutPercent": payout_percent,
        "severity": severity,
    }


def make_rule_model(**kwargs) -> PolicyThresholdRule:
    return PolicyThresholdRule.model_validate(make_rule(**kwargs))


def make_template(
    template_id: str = "TPL_RICE",
    rules: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "templateID": template_id,
        "indexThresholds": rules if rules is not None else [make_rule()],
    }


def make_observation(
    location: str = "Central_Bangkok",
    timestamp: str = "2025-07-15T06:00:00Z",
    rainfall: float = 5.0,
    temperature: float = 30.0,
    humidity: float = 50.0,
) -> ConsensusWeatherObservation:
    return ConsensusWeatherObservation(
        location=location,
        timestamp=timestamp,
        rainfall=rainfall,
        temperature=temperature,
        humidity=humidity,
    )


async def open_request(
    engine: ApprovalWorkflowEngine,
    request_id: str = "R1",
    required_orgs: list[str] | None = None,
    request_type: RequestType = RequestType.FARMER_REGISTRATION,
    metadata: dict[str, str] | None = None,
):
    """Create a request targeting farmer-cc.RegisterFarmer."""
    return await engine.create(
        request_id=request_id,
        request_type=request_type,
        target_contract="farmer-cc",
        target_operation="RegisterFarmer",
        arguments=["FARMER_001", "Somchai", "Central, Bangkok", "12.5"],
        required_orgs=required_orgs or [ORG_A, ORG_B],
        metadata=metadata,
        created_by=ORG_C,
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def store() -> InMemoryApprovalStore:
    return InMemoryApprovalStore()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(store, ledger, clock) -> ApprovalWorkflowEngine:
    """Engine with the default veto policy and default hooks."""
    return ApprovalWorkflowEngine(store, ledger, clock=clock)
