"""Settlement store: durable intent records with compare-and-swap writes.

Every mutation is an UPDATE guarded by `(intent_id, state, state_version)`.
That guard is the only mutual exclusion between concurrent confirm requests,
reconciliation sweeps and other service instances; nothing is locked while a
caller waits on the chain.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from chainpay.common.errors import ConcurrencyConflict, IntentNotFound
from chainpay.common.events import INTENT_FAILED_TOPIC, INTENT_SETTLED_TOPIC, EventEnvelope
from chainpay.common.logging import trace_id_ctx
from chainpay.common.state_machine import ACTIVE_STATES, PENDING, SETTLED, TERMINAL_STATES, validate_transition
from chainpay.services.settlement.models import ChainAttempt, IntentTimeline, OutboxEvent, PaymentIntent

TERMINAL_TOPICS = {SETTLED: INTENT_SETTLED_TOPIC}


class SettlementStore:
    """Access layer over `payment_intents` and its side tables."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(
        self,
        payer_address: str,
        token: str,
        amount: int,
        settlement_token: str,
        reference: str | None = None,
        description: str | None = None,
        callback_url: str | None = None,
    ) -> tuple[PaymentIntent, bool]:
        """Insert a `pending` intent; returns `(intent, created)`.

        A reference that already exists returns the stored intent untouched.
        """

        if reference is not None:
            existing = self.get_by_reference(reference)
            if existing is not None:
                return existing, False

        with self.session_factory() as db:
            intent = PaymentIntent(
                intent_id=str(uuid4()),
                reference=reference,
                payer_address=payer_address,
                token=token,
                amount=amount,
                settlement_token=settlement_token,
                state=PENDING,
                state_version=0,
                description=description,
                callback_url=callback_url,
            )
            db.add(intent)
            db.flush()
            db.add(IntentTimeline(intent_id=intent.intent_id, from_state=None, to_state=PENDING, reason="intent_created"))
            try:
                db.commit()
            except IntegrityError:
                # Lost a race on the same reference.
                db.rollback()
                existing = self.get_by_reference(reference) if reference is not None else None
                if existing is None:
                    raise
                return existing, False
            return db.get(PaymentIntent, intent.intent_id, populate_existing=True), True

    def get(self, intent_id: str) -> PaymentIntent | None:
        with self.session_factory() as db:
            return db.get(PaymentIntent, intent_id)

    def require(self, intent_id: str) -> PaymentIntent:
        intent = self.get(intent_id)
        if intent is None:
            raise IntentNotFound(intent_id)
        return intent

    def get_by_reference(self, reference: str) -> PaymentIntent | None:
        with self.session_factory() as db:
            return db.execute(select(PaymentIntent).where(PaymentIntent.reference == reference)).scalar_one_or_none()

    def compare_and_set(
        self,
        intent: PaymentIntent,
        new_state: str | None = None,
        reason: str = "",
        **fields,
    ) -> PaymentIntent:
        """Apply one write if the row still holds `intent.state`/`intent.state_version`.

        With `new_state` the write is a validated transition and gets a
        timeline row; terminal transitions also enqueue an outbox event. Without
        it, only `fields` change (recording a tx hash, bumping a counter).
        Raises `ConcurrencyConflict` when another worker got there first.
        """

        expected_state = intent.state
        expected_version = intent.state_version
        if new_state is not None:
            validate_transition(expected_state, new_state)
        elif expected_state in TERMINAL_STATES:
            raise ValueError(f"intent {intent.intent_id} is terminal ({expected_state})")

        values = dict(fields)
        values["state_version"] = expected_version + 1
        values["updated_at"] = datetime.now(timezone.utc)
        if new_state is not None:
            values["state"] = new_state

        with self.session_factory() as db:
            result = db.execute(
                update(PaymentIntent)
                .where(
                    PaymentIntent.intent_id == intent.intent_id,
                    PaymentIntent.state == expected_state,
                    PaymentIntent.state_version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConcurrencyConflict(intent.intent_id, expected_state, expected_version)

            if new_state is not None:
                db.add(
                    IntentTimeline(
                        intent_id=intent.intent_id,
                        from_state=expected_state,
                        to_state=new_state,
                        reason=reason or new_state,
                    )
                )
            updated = db.get(PaymentIntent, intent.intent_id, populate_existing=True)
            if new_state in TERMINAL_STATES:
                db.add(self._terminal_event(updated))
            db.commit()
            return updated

    def _terminal_event(self, intent: PaymentIntent) -> OutboxEvent:
        topic = TERMINAL_TOPICS.get(intent.state, INTENT_FAILED_TOPIC)
        envelope = EventEnvelope(
            event_type=topic,
            aggregate_id=intent.intent_id,
            trace_id=trace_id_ctx.get() or str(uuid4()),
            payload={
                "state": intent.state,
                "reference": intent.reference,
                "amount": str(intent.amount),
                "token": intent.token,
                "settlement_token": intent.settlement_token,
                "swap_tx_hash": intent.swap_tx_hash,
                "settlement_tx_hash": intent.settlement_tx_hash,
                "failure_reason": intent.failure_reason,
                "callback_url": intent.callback_url,
            },
        )
        return OutboxEvent(
            aggregate_type="payment_intent",
            aggregate_id=intent.intent_id,
            event_type=topic,
            topic=topic,
            payload=envelope.model_dump(),
        )

    def record_attempt(
        self,
        intent_id: str,
        kind: str,
        attempt_number: int,
        tx_hash: str | None,
        result: str,
        error_code: str | None = None,
    ) -> None:
        with self.session_factory() as db:
            db.add(
                ChainAttempt(
                    intent_id=intent_id,
                    kind=kind,
                    attempt_number=attempt_number,
                    tx_hash=tx_hash,
                    result=result,
                    error_code=error_code,
                )
            )
            db.commit()

    def attempts(self, intent_id: str, kind: str | None = None) -> list[ChainAttempt]:
        with self.session_factory() as db:
            query = select(ChainAttempt).where(ChainAttempt.intent_id == intent_id)
            if kind is not None:
                query = query.where(ChainAttempt.kind == kind)
            return list(db.execute(query.order_by(ChainAttempt.created_at, ChainAttempt.attempt_number)).scalars().all())

    def timeline(self, intent_id: str) -> list[IntentTimeline]:
        with self.session_factory() as db:
            rows = db.execute(select(IntentTimeline).where(IntentTimeline.intent_id == intent_id)).scalars().all()
            # created_at can tie; follow the transition chain instead.
            return _chain_order(list(rows))

    def list_active(self, limit: int = 100) -> list[PaymentIntent]:
        """Non-terminal intents, least recently touched first (reconciliation sweep)."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentIntent)
                    .where(PaymentIntent.state.in_(sorted(ACTIVE_STATES)))
                    .order_by(PaymentIntent.updated_at)
                    .limit(limit)
                )
                .scalars()
                .all()
            )


def _chain_order(rows: list[IntentTimeline]) -> list[IntentTimeline]:
    by_from = {row.from_state: row for row in rows}
    ordered = []
    row = by_from.get(None)
    while row is not None and len(ordered) < len(rows):
        ordered.append(row)
        row = by_from.get(row.to_state)
    return ordered
