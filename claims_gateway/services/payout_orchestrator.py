"""Automatic payout orchestrator — turns a weather consensus into claims and payouts.

This module:
1. Loads every Active policy from the ledger.
2. Keeps the policies whose farm location matches the observed location.
3. Loads each policy's template and checks every threshold rule against the
   observation.
4. For each breached rule, submits a claim trigger and then a payout from the
   premium pool.

Failure isolation:
- Only the initial policy listing is fatal; it raises LedgerFailure and no
  partial outcome is returned.
- A bad policy record, a missing template, or an empty rule set is recorded in
  ``errors`` and the run moves on to the next policy.
- Claim and payout are two independent ledger writes. If the payout fails the
  claim still counts as triggered, and the error names the claim and policy so
  the pair can be reconciled by hand. This holds for any exception either
  write raises, not only LedgerFailure.
- Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from claims_gateway.core.config import settings
from claims_gateway.core.errors import LedgerFailure
from claims_gateway.core.serialization import format_number
from claims_gateway.models.weather import (
    ConsensusWeatherObservation,
    PayoutOutcome,
    Policy,
    PolicyTemplate,
    PolicyThresholdRule,
)
from claims_gateway.services.ledger_client import LedgerClient
from claims_gateway.services.location import LocationMatcher, NormalizedSubstringMatcher
from claims_gateway.services.thresholds import breached

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "Active"


@dataclass
class _PolicyResult:
    breaches: int = 0
    claims: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class PayoutOrchestrator:
    def __init__(
        self,
        ledger: LedgerClient,
        *,
        matcher: LocationMatcher | None = None,
        max_concurrency: int | None = None,
        identity: str | None = None,
    ):
        self._ledger = ledger
        self._matcher = matcher or NormalizedSubstringMatcher()
        self._max_concurrency = max(1, max_concurrency or settings.payout_max_concurrency)
        self._identity = identity or settings.oracle_identity

    async def process_consensus(self, observation: ConsensusWeatherObservation) -> PayoutOutcome:
        """Check every matching policy against ``observation`` and trigger payouts.

        Raises:
            LedgerFailure: the active-policy listing could not be fetched.
        """
        outcome = PayoutOutcome()
        logger.info("Checking policies for automatic payout triggers in %s", observation.location)

        active = await self._active_policies()
        matched = [
            p for p in active
            if self._matcher.matches(str(p.get("farmLocation") or ""), observation.location)
        ]
        outcome.policies_checked = len(matched)
        logger.info(
            "%d active policies, %d in affected location %s",
            len(active), len(matched), observation.location,
        )

        if not matched:
            logger.info("No policies in affected location - no claims to trigger")
            return outcome

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(raw: dict[str, Any]) -> _PolicyResult:
            async with semaphore:
                return await self._process_policy(raw, observation)

        results = await asyncio.gather(*(_bounded(p) for p in matched), return_exceptions=True)

        for raw, result in zip(matched, results):
            if isinstance(result, BaseException):
                policy_id = raw.get("policyID", "<unknown>")
                logger.error("Unexpected error processing policy %s", policy_id, exc_info=result)
                outcome.errors.append(f"Error processing policy {policy_id}: {result}")
                continue
            outcome.thresholds_breached += result.breaches
            outcome.claims_triggered.extend(result.claims)
            outcome.errors.extend(result.errors)

        logger.info(
            "Automatic payout processing complete: location=%s checked=%d breached=%d "
            "claims=%d errors=%d",
            observation.location,
            outcome.policies_checked,
            outcome.thresholds_breached,
            len(outcome.claims_triggered),
            len(outcome.errors),
        )
        return outcome

    # ── Ledger reads ──────────────────────────────────────────────────────────

    async def _active_policies(self) -> list[dict[str, Any]]:
        policies = await self._ledger.evaluate(
            settings.chaincode_policy, "GetAllPolicies", identity=self._identity
        )
        if policies is None:
            return []
        if not isinstance(policies, list):
            raise LedgerFailure(
                0,
                f"GetAllPolicies returned {type(policies).__name__}, expected a list",
                f"{settings.chaincode_policy}.GetAllPolicies",
            )
        return [p for p in policies if isinstance(p, dict) and p.get("status") == ACTIVE_STATUS]

    async def _load_template(self, template_id: str) -> PolicyTemplate | None:
        raw = await self._ledger.evaluate(
            settings.chaincode_policy_template, "GetTemplate", template_id,
            identity=self._identity,
        )
        if raw is None:
            return None
        return PolicyTemplate.model_validate(raw)

    # ── Per-policy processing ─────────────────────────────────────────────────

    async def _process_policy(
        self, raw: dict[str, Any], observation: ConsensusWeatherObservation
    ) -> _PolicyResult:
        result = _PolicyResult()
        policy_id = raw.get("policyID", "<unknown>")

        try:
            policy = Policy.model_validate(raw)
        except ValidationError as exc:
            result.errors.append(
                f"Error processing policy {policy_id}: invalid policy record "
                f"({exc.error_count()} validation error(s))"
            )
            return result

        try:
            template = await self._load_template(policy.template_id)
        except LedgerFailure as exc:
            logger.error("Error getting template %s: %s", policy.template_id, exc)
            result.errors.append(
                f"Error processing policy {policy.policy_id}: "
                f"template {policy.template_id} unavailable: {exc}"
            )
            return result
        except ValidationError as exc:
            result.errors.append(
                f"Error processing policy {policy.policy_id}: template {policy.template_id} "
                f"is malformed ({exc.error_count()} validation error(s))"
            )
            return result

        if template is None:
            result.errors.append(
                f"Error processing policy {policy.policy_id}: template {policy.template_id} not found"
            )
            return result
        if not template.index_thresholds:
            logger.warning("Policy %s has no thresholds defined", policy.policy_id)
            result.errors.append(
                f"Policy {policy.policy_id} has no thresholds defined (template {policy.template_id})"
            )
            return result

        for rule in template.index_thresholds:
            if not breached(rule, observation):
                continue
            result.breaches += 1
            logger.warning(
                "THRESHOLD BREACHED: policy %s, %s %s %s",
                policy.policy_id, rule.index_type, rule.operator, rule.threshold_value,
            )
            await self._trigger_claim(policy, rule, observation, result)

        return result

    async def _trigger_claim(
        self,
        policy: Policy,
        rule: PolicyThresholdRule,
        observation: ConsensusWeatherObservation,
        result: _PolicyResult,
    ) -> None:
        claim_id = f"CLAIM_AUTO_{policy.policy_id}_{uuid.uuid4().hex[:12]}"
        payout_amount = policy.coverage_amount * rule.payout_percent / 100
        weather_ref = f"WEATHER_CONSENSUS_{observation.location}_{observation.timestamp}"

        logger.info(
            "Triggering claim %s for %s (%s%% of %s)",
            claim_id, format_number(payout_amount),
            format_number(rule.payout_percent), format_number(policy.coverage_amount),
        )
        try:
            await self._ledger.submit(
                settings.chaincode_claim_processor,
                "TriggerPayout",
                claim_id,
                policy.policy_id,
                policy.farmer_id,
                weather_ref,
                format_number(policy.coverage_amount),
                format_number(rule.payout_percent),
                identity=self._identity,
            )
        except Exception as exc:
            logger.error(
                "Error triggering claim for policy %s: %s", policy.policy_id, exc,
                exc_info=not isinstance(exc, LedgerFailure),
            )
            result.errors.append(
                f"Claim trigger failed for policy {policy.policy_id} "
                f"({rule.index_type} {rule.operator} {rule.threshold_value}): {exc}"
            )
            return

        result.claims.append(claim_id)
        logger.info("Automatic claim triggered: %s for policy %s", claim_id, policy.policy_id)

        tx_id = f"TX_PAYOUT_{claim_id}"
        try:
            await self._ledger.submit(
                settings.chaincode_premium_pool,
                "ExecutePayout",
                tx_id,
                policy.farmer_id,
                policy.policy_id,
                claim_id,
                format_number(payout_amount),
                identity=self._identity,
            )
        except Exception as exc:
            logger.error(
                "Error executing payout for claim %s: %s", claim_id, exc,
                exc_info=not isinstance(exc, LedgerFailure),
            )
            result.errors.append(
                f"Payout failed for claim {claim_id} (policy {policy.policy_id}, "
                f"amount {format_number(payout_amount)}): {exc}"
            )
            return

        logger.info("Payout executed: %s for %s", tx_id, format_number(payout_amount))
