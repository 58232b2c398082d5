"""Request-scoped dependencies: services from app state and the acting organization."""

from __future__ import annotations

from fastapi import Header, Request

from claims_gateway.services.approval_engine import ApprovalWorkflowEngine
from claims_gateway.services.payout_orchestrator import PayoutOrchestrator

# Front-end spellings (names, e-mail logins) of the network's member organizations.
_KNOWN_ORGS: dict[str, str] = {
    "insurer1": "Insurer1MSP",
    "insurer2": "Insurer2MSP",
    "coop": "CoopMSP",
    "platform": "PlatformMSP",
}


def to_msp_id(org: str) -> str:
    """Normalize an organization name to its MSP id.

    ``Insurer1MSP`` is returned unchanged; ``Insurer1``, ``insurer1`` and
    ``insurer1@example.com`` all become ``Insurer1MSP``. Unknown names get the
    ``MSP`` suffix appended.
    """
    org = org.strip()
    if org.endswith("MSP"):
        return org
    lowered = org.lower()
    for key, msp_id in _KNOWN_ORGS.items():
        if key in lowered:
            return msp_id
    return f"{org}MSP"


def caller_org(x_user_org: str | None = Header(default=None)) -> str | None:
    """The organization named by the X-User-Org header, if any."""
    if not x_user_org or not x_user_org.strip():
        return None
    return to_msp_id(x_user_org)


def get_engine(request: Request) -> ApprovalWorkflowEngine:
    return request.app.state.engine


def get_orchestrator(request: Request) -> PayoutOrchestrator:
    return request.app.state.orchestrator
