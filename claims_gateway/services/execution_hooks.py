"""Post-execution hooks, keyed by approval request type.

A hook runs after a request's target operation has committed. Hooks are
best-effort: a failure is reported back as a warning and never undoes or
retries the primary execution.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Awaitable, Callable

from claims_gateway.core.config import settings
from claims_gateway.core.errors import InvalidArgument
from claims_gateway.models.approval import ApprovalRequest, RequestType
from claims_gateway.services.ledger_client import LedgerClient

logger = logging.getLogger(__name__)

PostExecutionHook = Callable[[ApprovalRequest, LedgerClient], Awaitable[None]]


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: dict[RequestType, list[PostExecutionHook]] = defaultdict(list)

    def register(self, request_type: RequestType, hook: PostExecutionHook) -> None:
        self._hooks[request_type].append(hook)

    def hooks_for(self, request_type: RequestType) -> list[PostExecutionHook]:
        return list(self._hooks.get(request_type, []))


async def deposit_policy_premium(request: ApprovalRequest, ledger: LedgerClient) -> None:
    """Move a newly created policy's premium into the shared pool.

    Reads ``farmerID``, ``policyID`` and ``premiumAmount`` from the request
    metadata and submits ``DepositPremium`` as the executing organization.
    """
    missing = [k for k in ("farmerID", "policyID", "premiumAmount") if not request.metadata.get(k)]
    if missing:
        raise InvalidArgument(
            f"Premium deposit skipped for {request.request_id}: "
            f"metadata missing {', '.join(missing)}"
        )

    farmer_id = request.metadata["farmerID"]
    policy_id = request.metadata["policyID"]
    premium = request.metadata["premiumAmount"]
    tx_id = f"PREMIUM_{policy_id}_{int(time.time() * 1000)}"

    await ledger.submit(
        settings.chaincode_premium_pool,
        "DepositPremium",
        tx_id,
        farmer_id,
        policy_id,
        premium,
        identity=request.executed_by,
    )
    logger.info("Deposited premium %s for policy %s (tx=%s)", premium, policy_id, tx_id)


def default_hooks() -> HookRegistry:
    registry = HookRegistry()
    registry.register(RequestType.POLICY_CREATION, deposit_policy_premium)
    return registry
