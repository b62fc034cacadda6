"""Settlement orchestrator.

Drives each intent along

    pending -> verifying -> [swapping ->] settling -> settled
    (any non-terminal state) -> failed

one safe step at a time. Every write goes through the store's
compare-and-swap, so concurrent confirm calls, the reconciliation sweep and
other replicas can all work on the same intent: whoever loses a CAS drops its
attempt and reports the persisted state. Swap and settlement transactions are
signed first and recorded (hash plus raw payload) before they are broadcast,
which makes every in-flight transaction resumable and never re-signed while
it may still be mined.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from web3 import Web3

from chainpay.common.config import CommonSettings
from chainpay.common.errors import (
    ConcurrencyConflict,
    SettlementError,
    SettlementPipelineError,
    SettlementRevertedError,
    SwapError,
    TransientError,
    ValidationError,
)
from chainpay.common.events import KafkaBus
from chainpay.common.logging import intent_id_ctx, logger
from chainpay.common.metrics import (
    cas_conflicts_total,
    chain_submissions_total,
    confirm_latency_seconds,
    intent_e2e_seconds,
    intents_created_total,
    intents_failed_total,
    intents_settled_total,
    retries_total,
)
from chainpay.common.outbox import relay_outbox_once
from chainpay.common.state_machine import (
    FAILED,
    PENDING,
    SETTLED,
    SETTLING,
    SWAPPING,
    VERIFYING,
    is_terminal,
)
from chainpay.common.tokens import TokenRegistry
from chainpay.common.tracing import get_tracer
from chainpay.services.settlement.gateway import PaymentGatewayAdapter
from chainpay.services.settlement.models import OutboxEvent, PaymentIntent
from chainpay.services.settlement.store import SettlementStore
from chainpay.services.settlement.swap import SwapRouter

tracer = get_tracer("chainpay.settlement")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds for every retry the orchestrator performs."""

    funding_max_checks: int = 10
    funding_window_seconds: float = 600.0
    settlement_max_attempts: int = 3
    settlement_backoff_seconds: float = 1.0
    chain_max_deferrals: int = 5
    finality_timeout_seconds: float = 120.0
    reconcile_interval_seconds: float = 30.0
    reconcile_batch_size: int = 100

    @classmethod
    def from_settings(cls, cfg: CommonSettings) -> "RetryPolicy":
        return cls(
            funding_max_checks=cfg.funding_max_checks,
            funding_window_seconds=cfg.funding_window_seconds,
            settlement_max_attempts=cfg.settlement_max_attempts,
            settlement_backoff_seconds=cfg.settlement_backoff_seconds,
            chain_max_deferrals=cfg.chain_max_deferrals,
            finality_timeout_seconds=cfg.finality_timeout_seconds,
            reconcile_interval_seconds=cfg.reconcile_interval_seconds,
            reconcile_batch_size=cfg.reconcile_batch_size,
        )

    def settlement_backoff(self, failures: int) -> float:
        return self.settlement_backoff_seconds * 2 ** (failures - 1)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SettlementOrchestrator:
    """Owns intent creation and state-machine progression."""

    def __init__(
        self,
        store: SettlementStore,
        tokens: TokenRegistry,
        gateway: PaymentGatewayAdapter,
        swap_router: SwapRouter,
        policy: RetryPolicy | None = None,
        kafka: KafkaBus | None = None,
        service_name: str = "settlement",
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.gateway = gateway
        self.swap_router = swap_router
        self.policy = policy or RetryPolicy()
        self.kafka = kafka or KafkaBus()
        self.service_name = service_name
        self._steps = {
            PENDING: self._step_pending,
            VERIFYING: self._step_verifying,
            SWAPPING: self._step_swapping,
            SETTLING: self._step_settling,
        }

    def create_intent(self, req) -> tuple[PaymentIntent, bool]:
        """Validate and persist a new `pending` intent; returns `(intent, created)`.

        Nothing is written when validation fails. A repeated `reference`
        returns the intent created the first time.
        """

        self.tokens.resolve(req.token)
        self.tokens.resolve(req.settlement_token)
        if req.amount <= 0:
            raise ValidationError("amount must be a positive integer")
        if not Web3.is_address(req.payer_address):
            raise ValidationError("payer_address is not a valid address")

        intent, created = self.store.create(
            payer_address=Web3.to_checksum_address(req.payer_address),
            token=req.token.upper(),
            amount=req.amount,
            settlement_token=req.settlement_token.upper(),
            reference=req.reference,
            description=req.description,
            callback_url=req.callback_url,
        )
        if created:
            intents_created_total.labels(service=self.service_name).inc()
            logger.info(
                "intent_created intent_id=%s token=%s settlement_token=%s",
                intent.intent_id,
                intent.token,
                intent.settlement_token,
            )
        else:
            logger.info("intent_reference_reused intent_id=%s", intent.intent_id)
        return intent, created

    def expires_at(self, intent: PaymentIntent) -> datetime:
        return _aware(intent.created_at) + timedelta(seconds=self.policy.funding_window_seconds)

    def get_intent(self, intent_id: str) -> PaymentIntent:
        return self.store.require(intent_id)

    async def confirm(self, intent_id: str, funding_tx_hash: str | None = None) -> PaymentIntent:
        """Advance an intent as far as it can go right now and return it.

        Safe to call any number of times, concurrently: terminal intents are
        returned unchanged, and a caller that loses a race reports the state
        the winner persisted.
        """

        token = intent_id_ctx.set(intent_id)
        try:
            intent = self.store.require(intent_id)
            with confirm_latency_seconds.labels(service=self.service_name).time():
                while not is_terminal(intent.state):
                    try:
                        intent, progressed = await self.advance(intent, funding_tx_hash)
                    except ConcurrencyConflict as exc:
                        cas_conflicts_total.labels(service=self.service_name, state=exc.expected_state).inc()
                        logger.info("cas_conflict_yield state=%s version=%s", exc.expected_state, exc.expected_version)
                        return self.store.require(intent_id)
                    if not progressed:
                        break
            return intent
        finally:
            intent_id_ctx.reset(token)

    async def advance(self, intent: PaymentIntent, funding_tx_hash: str | None = None) -> tuple[PaymentIntent, bool]:
        """Perform exactly one safe step; returns `(intent, progressed)`.

        Transient failures are retried by a later call until the intent runs
        out of chain deferrals.
        Non-retryable pipeline errors fail the intent with their reason code.
        """

        if is_terminal(intent.state):
            return intent, False
        step = self._steps[intent.state]
        with tracer.start_as_current_span(f"settlement.{intent.state}") as span:
            span.set_attribute("chainpay.intent_id", intent.intent_id)
            span.set_attribute("chainpay.state", intent.state)
            try:
                return await step(intent, funding_tx_hash)
            except TransientError as exc:
                retries_total.labels(service=self.service_name, dependency="chain").inc()
                # The step may have recorded a tx hash before the error.
                current = self.store.require(intent.intent_id)
                if current.state != intent.state:
                    raise ConcurrencyConflict(intent.intent_id, intent.state, intent.state_version) from exc
                return self._defer(current, exc)
            except SettlementPipelineError as exc:
                span.set_attribute("chainpay.failure_reason", exc.reason)
                current = self.store.require(intent.intent_id)
                if current.state != intent.state:
                    raise ConcurrencyConflict(intent.intent_id, intent.state, intent.state_version) from exc
                return self._fail(current, exc.reason), True

    def _defer(self, intent: PaymentIntent, exc: TransientError) -> tuple[PaymentIntent, bool]:
        deferrals = intent.chain_deferrals + 1
        if deferrals >= self.policy.chain_max_deferrals:
            logger.error("chain_deferrals_exhausted state=%s deferrals=%s reason=%s", intent.state, deferrals, exc.reason)
            return self._fail(intent, exc.reason, chain_deferrals=deferrals), True
        logger.warning("step_deferred state=%s deferrals=%s reason=%s", intent.state, deferrals, exc.reason)
        # The write also moves updated_at, sending the intent to the back of the sweep.
        return self.store.compare_and_set(intent, chain_deferrals=deferrals), False

    async def _step_pending(self, intent: PaymentIntent, funding_tx_hash: str | None) -> tuple[PaymentIntent, bool]:
        try:
            evidence = await self.gateway.verify_funding(intent, funding_tx_hash)
        except TransientError as exc:
            return self._note_funding_miss(intent, exc)
        verified = self.store.compare_and_set(
            intent,
            VERIFYING,
            reason="funding_verified",
            chain_tx_hash=evidence.tx_hash or intent.chain_tx_hash,
        )
        logger.info("funding_verified intent_id=%s", intent.intent_id)
        return verified, True

    def _note_funding_miss(self, intent: PaymentIntent, exc: TransientError) -> tuple[PaymentIntent, bool]:
        checks = intent.funding_checks + 1
        age = (datetime.now(timezone.utc) - _aware(intent.created_at)).total_seconds()
        if checks >= self.policy.funding_max_checks or age > self.policy.funding_window_seconds:
            logger.warning("funding_window_exhausted checks=%s age_seconds=%.0f", checks, age)
            return self._fail(intent, "funding-timeout", funding_checks=checks), True
        logger.info("funding_not_yet_visible checks=%s reason=%s", checks, exc.reason)
        return self.store.compare_and_set(intent, funding_checks=checks), False

    async def _step_verifying(self, intent: PaymentIntent, _: str | None) -> tuple[PaymentIntent, bool]:
        if self.swap_router.needs_swap(intent):
            return self.store.compare_and_set(intent, SWAPPING, reason="swap_required"), True
        return self.store.compare_and_set(intent, SETTLING, reason="no_swap_required"), True

    async def _step_swapping(self, intent: PaymentIntent, _: str | None) -> tuple[PaymentIntent, bool]:
        if intent.swap_tx_hash is None:
            signed = await self.swap_router.prepare_swap(intent)
            # Only the CAS winner reaches the broadcast below.
            intent = self.store.compare_and_set(
                intent, swap_tx_hash=signed.tx_hash, pending_tx_payload=signed.raw_transaction
            )
            logger.info("swap_tx_recorded tx_hash=%s", signed.tx_hash)

        try:
            await self.swap_router.await_swap(
                intent.swap_tx_hash, intent.pending_tx_payload, self.policy.finality_timeout_seconds
            )
        except SwapError as exc:
            failed = self._fail(intent, exc.reason)
            self._record_outcome(failed, "swap", 1, failed.swap_tx_hash, "failed", exc.reason)
            return failed, True
        # Attempts are logged only by the worker whose CAS lands.
        settling = self.store.compare_and_set(
            intent, SETTLING, reason="swap_finalized", pending_tx_payload=None, chain_deferrals=0
        )
        self._record_outcome(settling, "swap", 1, settling.swap_tx_hash, "finalized")
        return settling, True

    async def _step_settling(self, intent: PaymentIntent, _: str | None) -> tuple[PaymentIntent, bool]:
        evidence = self.gateway.evidence_for(intent)
        while True:
            try:
                if intent.settlement_tx_hash is None:
                    signed = await self.gateway.prepare_settlement(intent, evidence)
                    intent = self.store.compare_and_set(
                        intent, settlement_tx_hash=signed.tx_hash, pending_tx_payload=signed.raw_transaction
                    )
                    logger.info("settlement_tx_recorded tx_hash=%s", signed.tx_hash)
                await self.gateway.await_settlement(
                    intent.settlement_tx_hash, intent.pending_tx_payload, self.policy.finality_timeout_seconds
                )
                break
            except SettlementError as exc:
                failures = intent.settlement_attempts + 1
                outcome = "reverted" if isinstance(exc, SettlementRevertedError) else "rejected"
                failed_hash = intent.settlement_tx_hash
                if failures >= self.policy.settlement_max_attempts:
                    logger.error("settlement_attempts_exhausted attempts=%s", failures)
                    failed = self._fail(intent, exc.reason, settlement_attempts=failures)
                    self._record_outcome(failed, "settlement", failures, failed_hash, "failed", outcome)
                    return failed, True

                delay = self.policy.settlement_backoff(failures)
                retries_total.labels(service=self.service_name, dependency="settlement").inc()
                logger.warning("settlement_retry attempt=%s outcome=%s backoff_seconds=%.1f", failures, outcome, delay)
                await asyncio.sleep(delay)
                fields = {"settlement_attempts": failures}
                if outcome == "reverted":
                    # Mined and spent; the next attempt needs a fresh nonce.
                    fields.update(settlement_tx_hash=None, pending_tx_payload=None)
                intent = self.store.compare_and_set(intent, **fields)
                self._record_outcome(intent, "settlement", failures, failed_hash, "failed", outcome)

        settled = self.store.compare_and_set(intent, SETTLED, reason="settlement_finalized", pending_tx_payload=None)
        self._record_outcome(settled, "settlement", settled.settlement_attempts + 1, settled.settlement_tx_hash, "finalized")
        intents_settled_total.labels(service=self.service_name).inc()
        self._observe_terminal(settled)
        logger.info("intent_settled settlement_tx_hash=%s", settled.settlement_tx_hash)
        return settled, True

    def _fail(self, intent: PaymentIntent, reason: str, **fields) -> PaymentIntent:
        failed = self.store.compare_and_set(
            intent, FAILED, reason=reason, failure_reason=reason, pending_tx_payload=None, **fields
        )
        intents_failed_total.labels(service=self.service_name, reason=reason).inc()
        self._observe_terminal(failed)
        logger.warning("intent_failed from_state=%s reason=%s", intent.state, reason)
        return failed

    def _record_outcome(
        self,
        intent: PaymentIntent,
        kind: str,
        attempt_number: int,
        tx_hash: str | None,
        result: str,
        error_code: str | None = None,
    ) -> None:
        chain_submissions_total.labels(service=self.service_name, kind=kind, result=error_code or result).inc()
        self.store.record_attempt(intent.intent_id, kind, attempt_number, tx_hash, result, error_code)

    def _observe_terminal(self, intent: PaymentIntent) -> None:
        if intent.created_at is None:
            return
        elapsed = max(0.0, (datetime.now(timezone.utc) - _aware(intent.created_at)).total_seconds())
        intent_e2e_seconds.labels(service=self.service_name, terminal_state=intent.state).observe(elapsed)

    async def reconcile(self, limit: int | None = None) -> dict:
        """Push every stalled non-terminal intent forward, oldest first.

        One intent failing never stops the sweep.
        """

        intents = self.store.list_active(limit or self.policy.reconcile_batch_size)
        summary = {"scanned": len(intents), "advanced": 0, "errors": 0}
        for intent in intents:
            try:
                result = await self.confirm(intent.intent_id)
            except Exception as exc:
                summary["errors"] += 1
                logger.exception("reconcile_intent_failed intent_id=%s error=%s", intent.intent_id, exc)
                continue
            if result.state_version != intent.state_version:
                summary["advanced"] += 1
        logger.info("reconcile_sweep scanned=%s advanced=%s errors=%s", *summary.values())
        return summary

    async def reconciliation_loop(self) -> None:
        """Periodic sweep so intents progress even without client polling."""

        while True:
            try:
                await self.reconcile()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("reconcile_loop_error error=%s", exc)
            await asyncio.sleep(self.policy.reconcile_interval_seconds)

    async def outbox_publisher(self) -> None:
        """Continuously publish terminal intent events from the outbox."""

        while True:
            try:
                await relay_outbox_once(self.store.session_factory, OutboxEvent, self.kafka, self.service_name)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("outbox_relay_error error=%s", exc)
            await asyncio.sleep(0.5)
