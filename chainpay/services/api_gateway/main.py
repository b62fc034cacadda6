"""Public entrypoint for payment intents.

The gateway enforces API key auth, per-payer rate limiting, and a Redis
idempotency cache keyed on the merchant reference before forwarding requests
to the settlement service.
"""

import json
from time import perf_counter, time
from uuid import uuid4

import httpx
import redis
from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from chainpay.common.config import settings
from chainpay.common.logging import configure_logging, intent_id_ctx, logger, trace_id_ctx
from chainpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from chainpay.common.startup import log_startup_config
from chainpay.common.tracing import instrument_app, setup_tracing

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "SETTLEMENT_URL",
        "REDIS_URL",
        "RATE_LIMIT_PER_MINUTE",
        "IDEMPOTENCY_TTL_SECONDS",
        "API_KEY",
    ],
)
app = FastAPI(title="ChainPay API Gateway")
instrument_app(app)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


class PayRequest(BaseModel):
    """Payload accepted by `POST /payments`."""

    payer_address: str = Field(pattern=r"^0x[0-9a-fA-F]{40}$")
    token: str = Field(min_length=1, max_length=16)
    amount: int = Field(gt=0)
    settlement_token: str = Field(min_length=1, max_length=16)
    reference: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=512)
    callback_url: str | None = Field(default=None, max_length=2048)


class ConfirmRequest(BaseModel):
    funding_tx_hash: str | None = Field(default=None, pattern=r"^0x[0-9a-fA-F]{64}$")


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def enforce_token_bucket(subject: str) -> None:
    # Redis token bucket (capacity = refill rate = limit per minute).
    key = f"tokenbucket:{subject.lower()}"
    now = time()
    capacity = float(settings.rate_limit_per_minute)
    refill_per_sec = capacity / 60.0

    values = rdb.hmget(key, "tokens", "updated_at")
    tokens = float(values[0]) if values[0] is not None else capacity
    updated_at = float(values[1]) if values[1] is not None else now
    elapsed = max(0.0, now - updated_at)
    tokens = min(capacity, tokens + elapsed * refill_per_sec)

    if tokens < 1.0:
        rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
        rdb.expire(key, 120)
        raise HTTPException(status_code=429, detail="rate limit exceeded")
    tokens -= 1.0
    rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
    rdb.expire(key, 120)


def _idempotency_cache_key(reference: str) -> str:
    return f"idempotency:intent:{reference}"


async def _forward(method: str, path: str, trace_id: str, payload: dict | None = None) -> dict:
    async with httpx.AsyncClient(timeout=settings.finality_timeout_seconds + 10.0) as client:
        resp = await client.request(
            method,
            f"{settings.settlement_url}{path}",
            headers={"x-trace-id": trace_id},
            json=payload,
        )
    if resp.status_code >= 400:
        logger.warning("settlement_rejected path=%s status=%s", path, resp.status_code)
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise HTTPException(status_code=resp.status_code, detail=detail)
    return resp.json()


@app.post("/payments")
async def create_payment(
    req: PayRequest,
    x_api_key: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
):
    """Create (or fetch existing) payment intent.

    Returns the cached response when the same merchant reference was already
    processed.
    """

    enforce_api_key(x_api_key)
    enforce_token_bucket(req.payer_address)
    trace_id = x_correlation_id or str(uuid4())
    trace_id_ctx.set(trace_id)

    cache_key = _idempotency_cache_key(req.reference) if req.reference else None
    if cache_key:
        try:
            cached = rdb.get(cache_key)
            if cached:
                return json.loads(cached)
        except Exception as exc:
            logger.warning("idempotency_cache_read_failed error=%s", exc)

    payload = await _forward("POST", "/internal/intents", trace_id, req.model_dump())
    if cache_key:
        try:
            rdb.setex(cache_key, settings.idempotency_ttl_seconds, json.dumps(payload))
        except Exception as exc:
            logger.warning("idempotency_cache_write_failed error=%s", exc)
    return payload


@app.post("/payments/{intent_id}/confirm")
async def confirm_payment(
    intent_id: str,
    req: ConfirmRequest | None = None,
    x_api_key: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
):
    """Ask settlement to advance the intent; safe to repeat."""

    enforce_api_key(x_api_key)
    enforce_token_bucket(f"intent:{intent_id}")
    trace_id = x_correlation_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    intent_id_ctx.set(intent_id)
    body = req.model_dump() if req else {}
    try:
        return await _forward("POST", f"/internal/intents/{intent_id}/confirm", trace_id, body)
    except httpx.TimeoutException:
        # Settlement keeps working on the intent; report where it stands now.
        logger.warning("confirm_timed_out intent_id=%s", intent_id)
        current = await _forward("GET", f"/intents/{intent_id}", trace_id)
        return {key: current.get(key) for key in ("intent_id", "state", "settlement_tx_hash", "failure_reason")}


@app.get("/payments/{intent_id}")
async def get_payment(
    intent_id: str,
    x_api_key: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
):
    """Current state of one intent."""

    enforce_api_key(x_api_key)
    trace_id = x_correlation_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    return await _forward("GET", f"/intents/{intent_id}", trace_id)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
