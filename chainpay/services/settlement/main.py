"""HTTP surface for settlement-owned intents and lifecycle workers."""

import asyncio
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query

from chainpay.common.chain import ChainClient
from chainpay.common.config import settings
from chainpay.common.db import SessionLocal
from chainpay.common.errors import IntentNotFound, ValidationError
from chainpay.common.logging import configure_logging, logger, trace_id_ctx
from chainpay.common.metrics import metrics_response
from chainpay.common.signer import OperatorSigner
from chainpay.common.startup import log_startup_config
from chainpay.common.tokens import TokenRegistry
from chainpay.common.tracing import instrument_app, setup_tracing
from chainpay.services.settlement.gateway import PaymentGatewayAdapter
from chainpay.services.settlement.models import PaymentIntent
from chainpay.services.settlement.schemas import (
    ConfirmRequest,
    ConfirmResponse,
    IntentResponse,
    PayRequest,
    PayResponse,
    ReconcileResponse,
)
from chainpay.services.settlement.service import RetryPolicy, SettlementOrchestrator
from chainpay.services.settlement.store import SettlementStore
from chainpay.services.settlement.swap import SwapRouter

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "RPC_URL",
        "CHAIN_ID",
        "PAYMENT_GATEWAY_ADDRESS",
        "SWAP_ROUTER_ADDRESS",
        "OPERATOR_PRIVATE_KEY",
    ],
)

tokens = TokenRegistry(settings.token_addresses)
chain = ChainClient(
    settings.rpc_url,
    settings.chain_id,
    finality_confirmations=settings.finality_confirmations,
    poll_interval_seconds=settings.finality_poll_seconds,
    request_timeout=settings.rpc_timeout_seconds,
)
signer = OperatorSigner(settings.operator_private_key.get_secret_value())
service = SettlementOrchestrator(
    SettlementStore(SessionLocal),
    tokens,
    PaymentGatewayAdapter(
        chain,
        signer,
        tokens,
        settings.payment_gateway_address,
        finality_timeout_seconds=settings.finality_timeout_seconds,
        funding_log_lookback_blocks=settings.funding_log_lookback_blocks,
    ),
    SwapRouter(
        chain,
        signer,
        tokens,
        settings.swap_router_address,
        slippage_bps=settings.swap_slippage_bps,
        deadline_seconds=settings.swap_deadline_seconds,
        finality_timeout_seconds=settings.finality_timeout_seconds,
    ),
    policy=RetryPolicy.from_settings(settings),
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the outbox publisher and the reconciliation sweep with the app."""

    publisher_task = asyncio.create_task(service.outbox_publisher())
    reconcile_task = asyncio.create_task(service.reconciliation_loop())
    yield
    publisher_task.cancel()
    reconcile_task.cancel()
    await service.kafka.close()


app = FastAPI(title="ChainPay Settlement", lifespan=lifespan)
instrument_app(app)


def _bind_trace(x_trace_id: str | None) -> None:
    trace_id_ctx.set(x_trace_id or str(uuid4()))


def _confirm_view(intent: PaymentIntent) -> ConfirmResponse:
    return ConfirmResponse(
        intent_id=intent.intent_id,
        state=intent.state,
        settlement_tx_hash=intent.settlement_tx_hash,
        failure_reason=intent.failure_reason,
    )


def _intent_view(intent: PaymentIntent) -> IntentResponse:
    return IntentResponse(
        intent_id=intent.intent_id,
        state=intent.state,
        settlement_tx_hash=intent.settlement_tx_hash,
        failure_reason=intent.failure_reason,
        reference=intent.reference,
        payer_address=intent.payer_address,
        token=intent.token,
        amount=str(intent.amount),
        settlement_token=intent.settlement_token,
        chain_tx_hash=intent.chain_tx_hash,
        swap_tx_hash=intent.swap_tx_hash,
        description=intent.description,
        created_at=intent.created_at,
        updated_at=intent.updated_at,
    )


@app.post("/internal/intents", response_model=PayResponse)
async def create_intent(req: PayRequest, x_trace_id: str | None = Header(default=None)):
    """Create an intent in `pending`, or return the one already holding `reference`."""

    _bind_trace(x_trace_id)
    try:
        intent, _ = service.create_intent(req)
    except ValidationError as exc:
        logger.info("intent_rejected reason=%s", exc.reason)
        raise HTTPException(status_code=400, detail=exc.reason) from exc
    return PayResponse(intent_id=intent.intent_id, state=intent.state, expires_at=service.expires_at(intent))


@app.post("/internal/intents/{intent_id}/confirm", response_model=ConfirmResponse)
async def confirm_intent(
    intent_id: str,
    req: ConfirmRequest | None = None,
    x_trace_id: str | None = Header(default=None),
):
    """Advance the intent as far as possible and report where it stands."""

    _bind_trace(x_trace_id)
    try:
        intent = await service.confirm(intent_id, req.funding_tx_hash if req else None)
    except IntentNotFound as exc:
        raise HTTPException(status_code=404, detail="intent not found") from exc
    return _confirm_view(intent)


@app.get("/intents/{intent_id}", response_model=IntentResponse)
def get_intent(intent_id: str):
    """Fetch current state for one intent."""

    try:
        intent = service.get_intent(intent_id)
    except IntentNotFound as exc:
        raise HTTPException(status_code=404, detail="intent not found") from exc
    return _intent_view(intent)


@app.post("/internal/reconcile", response_model=ReconcileResponse)
async def reconcile(limit: int | None = Query(default=None, gt=0, le=1000)):
    """Run one reconciliation sweep immediately."""

    return ReconcileResponse(**await service.reconcile(limit))


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True, "signer": signer.available}
