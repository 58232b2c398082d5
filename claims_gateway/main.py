"""Parametric Claims Gateway — multi-organization approvals and automatic payouts.

This service sits between the member organizations' front-ends and the shared
insurance ledger. Writes that need sign-off from several organizations go
through an approval request; weather consensus results from the oracle network
are turned into claims and premium-pool payouts without any human step.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from claims_gateway.api.routes import router
from claims_gateway.core.config import settings
from claims_gateway.core.database import build_engine, build_session_factory, init_models
from claims_gateway.core.errors import register_error_handlers
from claims_gateway.core.middleware import RequestLoggingMiddleware
from claims_gateway.services.approval_engine import ApprovalWorkflowEngine, rejection_policy_for
from claims_gateway.services.approval_store import InMemoryApprovalStore, SqlApprovalStore
from claims_gateway.services.ledger_client import HttpLedgerClient
from claims_gateway.services.location import matcher_for
from claims_gateway.services.payout_orchestrator import PayoutOrchestrator

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)

logger = logging.getLogger(__name__)


DESCRIPTION = """\
Multi-organization approval workflow and automatic payout orchestration for a
**parametric crop insurance ledger**.

### Approval lifecycle

| Step | Endpoint | Description |
|------|----------|-------------|
| 1 | `POST /api/v1/approvals` | Open a request naming a ledger operation and the orgs that must agree |
| 2 | `POST /api/v1/approvals/{id}/approve` | Each required org signs off |
| 3 | `POST /api/v1/approvals/{id}/execute` | Submit the approved operation to the ledger, once |
| - | `POST /api/v1/approvals/{id}/reject` | Any required org may veto while PENDING |

### Automatic payouts

`POST /api/v1/weather/consensus` checks every active policy in the observed
location against its template thresholds and triggers a claim and a payout for
each breach.

### Acting organization

Approve, reject and execute act on behalf of the organization in the body's
`org` field, or the `X-User-Org` header when the body names none.
"""


TAGS_METADATA = [
    {"name": "approvals", "description": "Quorum approval requests and their audit history."},
    {"name": "payouts", "description": "Weather consensus processing and automatic payouts."},
    {"name": "ops", "description": "Health checks and operational endpoints."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    ledger = HttpLedgerClient()

    db_engine = None
    if settings.approval_store_backend == "sql":
        db_engine = build_engine(settings.database_url)
        await init_models(db_engine)
        store = SqlApprovalStore(build_session_factory(db_engine))
        logger.info("Approval store: SQL")
    else:
        store = InMemoryApprovalStore()
        logger.info("Approval store: in-memory (requests are lost on restart)")

    app.state.ledger = ledger
    app.state.engine = ApprovalWorkflowEngine(
        store, ledger, rejection_policy=rejection_policy_for(settings.rejection_quorum)
    )
    app.state.orchestrator = PayoutOrchestrator(
        ledger, matcher=matcher_for(settings.location_match_strategy)
    )
    logger.info("Ledger gateway at %s", settings.ledger_gateway_url)
    yield
    if db_engine is not None:
        await db_engine.dispose()
        logger.info("Database engine disposed")


app = FastAPI(
    title="Parametric Claims Gateway",
    version="0.1.0",
    description=DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=TAGS_METADATA,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/health", tags=["ops"])
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "claims-gateway"}
