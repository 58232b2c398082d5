"""Tests for the automatic payout orchestrator.

Test categories:
1. Happy path: a breach becomes a claim and a payout.
2. Partial failures: claim/payout/template errors are isolated per policy.
3. Filtering: status, location and matcher strategy.
4. Fatal listing errors.
"""

import json

import httpx
import pytest

from claims_gateway.core.config import settings
from claims_gateway.core.errors import LedgerFailure
from claims_gateway.services.ledger_client import HttpLedgerClient
from claims_gateway.services.location import ExactRegionMatcher
from claims_gateway.services.payout_orchestrator import PayoutOrchestrator
from tests.conftest import FakeLedger, make_observation, make_policy, make_rule, make_template


def _orchestrator(ledger: FakeLedger, **kwargs) -> PayoutOrchestrator:
    return PayoutOrchestrator(ledger, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════════
# 1. HAPPY PATH
# ═══════════════════════════════════════════════════════════════════════════════


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_rainfall_breach_triggers_claim_and_payout(self):
        """5mm < 50mm on an 80000 policy at 60% → claim plus a 48000 payout."""
        ledger = FakeLedger(
            policies=[make_policy(farm_location="Central, Bangkok", coverage_amount=80000)],
            templates={"TPL_RICE": make_template(rules=[make_rule("Rainfall", "<", 50, 60)])},
        )

        outcome = await _orchestrator(ledger).process_consensus(
            make_observation(location="Central_Bangkok", rainfall=5, temperature=30, humidity=50)
        )

        assert outcome.policies_checked == 1
        assert outcome.thresholds_breached == 1
        assert len(outcome.claims_triggered) == 1
        assert outcome.errors == []

        claim_id = outcome.claims_triggered[0]
        assert claim_id.startswith("CLAIM_AUTO_POL_001_")

        [trigger] = ledger.submitted("TriggerPayout")
        assert trigger.contract == "claim-processor-cc"
        assert trigger.args == (
            claim_id,
            "POL_001",
            "FARMER_001",
            "WEATHER_CONSENSUS_Central_Bangkok_2025-07-15T06:00:00Z",
            "80000",
            "60",
        )

        [payout] = ledger.submitted("ExecutePayout")
        assert payout.contract == "premium-pool-cc"
        assert payout.args == (f"TX_PAYOUT_{claim_id}", "FARMER_001", "POL_001", claim_id, "48000")

    @pytest.mark.asyncio
    async def test_calls_use_oracle_identity(self):
        ledger = FakeLedger(policies=[make_policy()], templates={"TPL_RICE": make_template()})
        await _orchestrator(ledger).process_consensus(make_observation())

        calls = ledger.evaluations + ledger.submissions
        assert calls
        assert {c.identity for c in calls} == {settings.oracle_identity}

    @pytest.mark.asyncio
    async def test_each_breached_rule_gets_its_own_claim(self):
        template = make_template(
            rules=[
                make_rule("Rainfall", "<", 50, 60),
                make_rule("Temperature", ">", 25, 20),
                make_rule("Humidity", ">", 90, 10),
            ]
        )
        ledger = FakeLedger(policies=[make_policy()], templates={"TPL_RICE": template})

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.thresholds_breached == 2
        assert len(outcome.claims_triggered) == 2
        assert len(set(outcome.claims_triggered)) == 2
        amounts = sorted(c.args[-1] for c in ledger.submitted("ExecutePayout"))
        assert amounts == ["16000", "48000"]

    @pytest.mark.asyncio
    async def test_fractional_payout_amount(self):
        ledger = FakeLedger(
            policies=[make_policy(coverage_amount=1000)],
            templates={"TPL_RICE": make_template(rules=[make_rule(payout_percent=12.5)])},
        )
        await _orchestrator(ledger).process_consensus(make_observation())
        [payout] = ledger.submitted("ExecutePayout")
        assert payout.args[-1] == "125"

    @pytest.mark.asyncio
    async def test_no_breach_no_writes(self):
        ledger = FakeLedger(
            policies=[make_policy()],
            templates={"TPL_RICE": make_template(rules=[make_rule("Rainfall", "<", 1, 60)])},
        )
        outcome = await _orchestrator(ledger).process_consensus(make_observation(rainfall=5))

        assert outcome.policies_checked == 1
        assert outcome.thresholds_breached == 0
        assert outcome.claims_triggered == []
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_claims_merged_in_policy_order(self):
        policies = [make_policy(policy_id=f"POL_{i}", farmer_id=f"F_{i}") for i in range(1, 6)]
        ledger = FakeLedger(policies=policies, templates={"TPL_RICE": make_template()})
        ledger.submit_delay = 0.001

        outcome = await _orchestrator(ledger, max_concurrency=2).process_consensus(make_observation())

        assert [c.split("_")[3] for c in outcome.claims_triggered] == ["1", "2", "3", "4", "5"]


# ═══════════════════════════════════════════════════════════════════════════════
# 2. PARTIAL FAILURES
# ═══════════════════════════════════════════════════════════════════════════════


class TestPartialFailures:
    @pytest.mark.asyncio
    async def test_payout_failure_keeps_claim(self):
        """The claim write succeeded, so it is reported even though the payout failed."""
        ledger = FakeLedger(policies=[make_policy()], templates={"TPL_RICE": make_template()})
        ledger.fail_submit = lambda call: call.operation == "ExecutePayout"

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert len(outcome.claims_triggered) == 1
        claim_id = outcome.claims_triggered[0]
        assert len(outcome.errors) == 1
        assert claim_id in outcome.errors[0]
        assert "POL_001" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_claim_failure_skips_payout(self):
        ledger = FakeLedger(policies=[make_policy()], templates={"TPL_RICE": make_template()})
        ledger.fail_submit = lambda call: call.operation == "TriggerPayout"

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.thresholds_breached == 1
        assert outcome.claims_triggered == []
        assert ledger.submitted("ExecutePayout") == []
        assert len(outcome.errors) == 1
        assert "POL_001" in outcome.errors[0]
        assert "Rainfall" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_template_failure_does_not_stop_other_policies(self):
        ledger = FakeLedger(
            policies=[
                make_policy(policy_id="POL_A", template_id="TPL_BROKEN"),
                make_policy(policy_id="POL_B", template_id="TPL_RICE"),
            ],
            templates={"TPL_RICE": make_template()},
        )
        ledger.failing_templates.add("TPL_BROKEN")

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.policies_checked == 2
        assert len(outcome.claims_triggered) == 1
        assert outcome.claims_triggered[0].startswith("CLAIM_AUTO_POL_B_")
        assert len(outcome.errors) == 1
        assert "POL_A" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_missing_template(self):
        ledger = FakeLedger(policies=[make_policy(template_id="TPL_GONE")])
        outcome = await _orchestrator(ledger).process_consensus(make_observation())
        assert outcome.errors == ["Error processing policy POL_001: template TPL_GONE not found"]

    @pytest.mark.asyncio
    async def test_empty_thresholds_reported(self):
        ledger = FakeLedger(policies=[make_policy()], templates={"TPL_RICE": make_template(rules=[])})
        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.policies_checked == 1
        assert outcome.thresholds_breached == 0
        assert len(outcome.errors) == 1
        assert "no thresholds" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_malformed_policy_record(self):
        broken = make_policy(policy_id="POL_BAD")
        del broken["coverageAmount"]
        ledger = FakeLedger(
            policies=[broken, make_policy(policy_id="POL_OK")],
            templates={"TPL_RICE": make_template()},
        )

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert len(outcome.claims_triggered) == 1
        assert len(outcome.errors) == 1
        assert "POL_BAD" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_malformed_template(self):
        ledger = FakeLedger(
            policies=[make_policy()],
            templates={"TPL_RICE": make_template(rules=[make_rule(payout_percent=150)])},
        )
        outcome = await _orchestrator(ledger).process_consensus(make_observation())
        assert outcome.claims_triggered == []
        assert "malformed" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self):
        def explode(call):
            if call.args[1] == "POL_A":
                raise RuntimeError("connection reset")
            return False

        ledger = FakeLedger(
            policies=[make_policy(policy_id="POL_A"), make_policy(policy_id="POL_B")],
            templates={"TPL_RICE": make_template()},
        )
        ledger.fail_submit = explode

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert len(outcome.claims_triggered) == 1
        assert outcome.claims_triggered[0].startswith("CLAIM_AUTO_POL_B_")
        assert outcome.thresholds_breached == 2
        [error] = outcome.errors
        assert error.startswith("Claim trigger failed for policy POL_A (Rainfall < ")
        assert error.endswith(": connection reset")

    @pytest.mark.asyncio
    async def test_unexpected_payout_error_keeps_committed_claims(self):
        """Both claims commit; both payouts blow up with a non-ledger error."""

        def explode(call):
            if call.operation == "ExecutePayout":
                raise RuntimeError("server disconnected")
            return False

        ledger = FakeLedger(
            policies=[make_policy()],
            templates={
                "TPL_RICE": make_template(
                    rules=[make_rule("Rainfall", "<", 50, 60), make_rule("Temperature", ">", 25, 20)]
                )
            },
        )
        ledger.fail_submit = explode

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.thresholds_breached == 2
        assert len(outcome.claims_triggered) == 2
        assert len(ledger.submitted("TriggerPayout")) == 2
        assert len(outcome.errors) == 2
        for claim_id, error in zip(outcome.claims_triggered, outcome.errors):
            assert error.startswith(f"Payout failed for claim {claim_id} (policy POL_001, ")
            assert error.endswith(": server disconnected")

    @pytest.mark.asyncio
    async def test_dropped_gateway_connection_on_payout(self):
        """Over HTTP: the gateway hangs up on ExecutePayout after both claims commit."""
        template = make_template(
            rules=[make_rule("Rainfall", "<", 50, 60), make_rule("Humidity", "<", 80, 10)]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if body["operation"] == "GetAllPolicies":
                return httpx.Response(200, json={"result": json.dumps([make_policy()])})
            if body["operation"] == "GetTemplate":
                return httpx.Response(200, json={"result": json.dumps(template)})
            if body["operation"] == "ExecutePayout":
                raise httpx.RemoteProtocolError("Server disconnected without sending a response.")
            return httpx.Response(200, json={"result": "{}", "transactionId": "tx-1"})

        ledger = HttpLedgerClient("http://ledger.test", transport=httpx.MockTransport(handler))

        outcome = await PayoutOrchestrator(ledger).process_consensus(make_observation())

        assert outcome.policies_checked == 1
        assert outcome.thresholds_breached == 2
        assert len(outcome.claims_triggered) == 2
        assert len(outcome.errors) == 2
        assert all("Server disconnected" in e for e in outcome.errors)


# ═══════════════════════════════════════════════════════════════════════════════
# 3. FILTERING
# ═══════════════════════════════════════════════════════════════════════════════


class TestFiltering:
    @pytest.mark.asyncio
    async def test_no_matching_location(self):
        ledger = FakeLedger(policies=[make_policy(farm_location="Chiang Mai")])

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.policies_checked == 0
        assert outcome.thresholds_breached == 0
        assert outcome.claims_triggered == []
        assert outcome.errors == []
        assert [c.operation for c in ledger.evaluations] == ["GetAllPolicies"]

    @pytest.mark.asyncio
    async def test_inactive_policies_ignored(self):
        ledger = FakeLedger(
            policies=[
                make_policy(policy_id="POL_EXPIRED", status="Expired"),
                make_policy(policy_id="POL_CLAIMED", status="Claimed"),
                make_policy(policy_id="POL_LIVE"),
            ],
            templates={"TPL_RICE": make_template()},
        )

        outcome = await _orchestrator(ledger).process_consensus(make_observation())

        assert outcome.policies_checked == 1
        assert outcome.claims_triggered[0].startswith("CLAIM_AUTO_POL_LIVE_")

    @pytest.mark.asyncio
    async def test_exact_region_matcher(self):
        ledger = FakeLedger(
            policies=[
                make_policy(policy_id="POL_1", farm_location="TH-10"),
                make_policy(policy_id="POL_2", farm_location="TH-100"),
            ],
            templates={"TPL_RICE": make_template()},
        )

        outcome = await _orchestrator(ledger, matcher=ExactRegionMatcher()).process_consensus(
            make_observation(location="TH-10")
        )

        assert outcome.policies_checked == 1
        assert outcome.claims_triggered[0].startswith("CLAIM_AUTO_POL_1_")

    @pytest.mark.asyncio
    async def test_no_policies_on_ledger(self):
        ledger = FakeLedger()
        ledger.policies = None
        outcome = await _orchestrator(ledger).process_consensus(make_observation())
        assert outcome.policies_checked == 0


# ═══════════════════════════════════════════════════════════════════════════════
# 4. FATAL LISTING ERRORS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFatalListing:
    @pytest.mark.asyncio
    async def test_listing_failure_raises(self):
        ledger = FakeLedger()
        ledger.fail_policy_listing = True
        with pytest.raises(LedgerFailure):
            await _orchestrator(ledger).process_consensus(make_observation())
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_non_list_listing_raises(self):
        ledger = FakeLedger()
        ledger.policies = {"policyID": "POL_001"}
        with pytest.raises(LedgerFailure, match="expected a list"):
            await _orchestrator(ledger).process_consensus(make_observation())
