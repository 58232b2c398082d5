"""Client contract for the shared ledger, plus its HTTP gateway adapter.

Every ledger interaction is one of two calls:

- ``evaluate`` — a side-effect-free read, answered by a single peer.
- ``submit``   — a durable write that returns only after the ledger commits.

Arguments are always ordered strings; callers encode structured values with
:mod:`claims_gateway.core.serialization` first. The acting organization is
passed on every call as ``identity``; the client keeps no "current org".
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from claims_gateway.core.config import settings
from claims_gateway.core.errors import LedgerFailure
from claims_gateway.core.serialization import decode_result

logger = logging.getLogger(__name__)


@dataclass
class LedgerSubmission:
    """Outcome of a committed write."""

    result: Any
    transaction_id: str | None = None


class LedgerClient(abc.ABC):
    @abc.abstractmethod
    async def evaluate(
        self, contract: str, operation: str, *args: str, identity: str | None = None
    ) -> Any:
        """Run a read-only operation and return its decoded result."""

    @abc.abstractmethod
    async def submit(
        self, contract: str, operation: str, *args: str, identity: str | None = None
    ) -> LedgerSubmission:
        """Run a write and return once it is durable. Raises LedgerFailure otherwise."""


class HttpLedgerClient(LedgerClient):
    """Talks to a ledger gateway over HTTP.

    ``POST {base}/api/v1/ledger/evaluate`` and ``POST {base}/api/v1/ledger/submit``
    both take ``{"contract", "operation", "args", "identity"}`` and answer
    ``{"result": ..., "transactionId": ...}``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        evaluate_timeout: float | None = None,
        submit_timeout: float | None = None,
        default_identity: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base = (base_url or settings.ledger_gateway_url).rstrip("/")
        self._evaluate_timeout = evaluate_timeout or settings.ledger_evaluate_timeout
        self._submit_timeout = submit_timeout or settings.ledger_submit_timeout
        self._default_identity = default_identity or settings.default_org
        self._transport = transport

    async def evaluate(
        self, contract: str, operation: str, *args: str, identity: str | None = None
    ) -> Any:
        logger.debug("Evaluating %s.%s (%d args)", contract, operation, len(args))
        body = await self._post("evaluate", contract, operation, args, identity, self._evaluate_timeout)
        return decode_result(body.get("result"))

    async def submit(
        self, contract: str, operation: str, *args: str, identity: str | None = None
    ) -> LedgerSubmission:
        logger.info(
            "Submitting %s.%s (%d args) as %s",
            contract, operation, len(args), identity or self._default_identity,
        )
        body = await self._post("submit", contract, operation, args, identity, self._submit_timeout)
        submission = LedgerSubmission(
            result=decode_result(body.get("result")),
            transaction_id=body.get("transactionId"),
        )
        logger.info("Committed %s.%s tx=%s", contract, operation, submission.transaction_id)
        return submission

    async def _post(
        self,
        mode: str,
        contract: str,
        operation: str,
        args: tuple[str, ...],
        identity: str | None,
        timeout: float,
    ) -> dict[str, Any]:
        qualified = f"{contract}.{operation}"
        non_strings = [i for i, a in enumerate(args) if not isinstance(a, str)]
        if non_strings:
            raise TypeError(f"{qualified}: ledger arguments must be strings (positions {non_strings})")

        payload = {
            "contract": contract,
            "operation": operation,
            "args": list(args),
            "identity": identity or self._default_identity,
        }

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(f"{self._base}/api/v1/ledger/{mode}", json=payload)
        except httpx.HTTPError as exc:
            raise LedgerFailure(0, f"Cannot reach ledger gateway at {self._base}: {exc}", qualified) from exc

        if resp.status_code >= 400:
            logger.warning("Ledger %s %s failed: %d %s", mode, qualified, resp.status_code, resp.text[:200])
            raise LedgerFailure(resp.status_code, resp.text, qualified)

        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError as exc:
            raise LedgerFailure(resp.status_code, f"Malformed gateway response: {resp.text[:200]}", qualified) from exc
        return body if isinstance(body, dict) else {"result": body}
