"""Shared fixtures: in-memory store, scripted chain, real offline signer."""

import asyncio
import os

# Settings are read at import time; configure before any chainpay import.
os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("SERVICE_NAME", "settlement-test")
os.environ.setdefault("PAYMENT_GATEWAY_ADDRESS", "0x00000000000000000000000000000000000000a1")
os.environ.setdefault("SWAP_ROUTER_ADDRESS", "0x00000000000000000000000000000000000000b2")
os.environ.setdefault(
    "TOKEN_ADDRESSES",
    '{"USDC": "0x00000000000000000000000000000000000000c3",'
    ' "ETH": "0x00000000000000000000000000000000000000d4",'
    ' "USDT": "0x00000000000000000000000000000000000000e5"}',
)
os.environ.setdefault("OPERATOR_PRIVATE_KEY", "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "http://127.0.0.1:4318/v1/traces")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from web3 import Web3

from chainpay.common.chain import TERMINAL_TX_STATUSES, TxStatus
from chainpay.common.config import settings
from chainpay.common.db import Base
from chainpay.common.errors import FinalityTimeoutError, SubmissionError
from chainpay.common.signer import OperatorSigner, SignedPayload
from chainpay.common.tokens import TokenRegistry
from chainpay.services.notification import models as notification_models  # noqa: F401
from chainpay.services.settlement.abi import PAYMENT_STATUS_FUNDED
from chainpay.services.settlement.gateway import PaymentGatewayAdapter, payment_reference
from chainpay.services.settlement.service import RetryPolicy, SettlementOrchestrator
from chainpay.services.settlement.store import SettlementStore
from chainpay.services.settlement.swap import SwapRouter

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

TEST_KEY = os.environ["OPERATOR_PRIVATE_KEY"]

_STATUS_FOR_OUTCOME = {
    "finalized": TxStatus.FINALIZED,
    "reverted": TxStatus.REVERTED,
    "timeout": TxStatus.PENDING,
}


class FakeChain:
    """Scripted stand-in for `ChainClient`.

    Gateway records and quotes are plain attributes. Each broadcast of a
    `swapExactIn`/`settlePayment` payload pops the next scripted outcome for
    that function ("finalized" by default; "reverted", "reject", "timeout").
    """

    def __init__(self) -> None:
        self.records: dict[bytes, tuple] = {}
        self.quote_result: int | Exception = 2_000_000
        self.outcomes: dict[str, list[str]] = {"swapExactIn": [], "settlePayment": []}
        self.tx_status: dict[str, TxStatus] = {}
        self.built: list[tuple[str, str, tuple]] = []
        self.submissions: list[tuple[str, str]] = []
        self.read_error: Exception | None = None
        self.funding_logs: dict[str, str] = {}
        self.log_error: Exception | None = None
        self._nonce = 0

    async def read_contract_state(self, address, abi, selector, args=()):
        await asyncio.sleep(0)
        if self.read_error is not None:
            raise self.read_error
        if selector == "getPayment":
            return self.records.get(bytes(args[0]), (ZERO_ADDRESS, ZERO_ADDRESS, 0, 0))
        if selector == "quote":
            if isinstance(self.quote_result, Exception):
                raise self.quote_result
            return self.quote_result
        raise AssertionError(f"unexpected read {selector}")

    async def latest_log_tx_hash(self, address, topics, lookback_blocks):
        await asyncio.sleep(0)
        if self.log_error is not None:
            raise self.log_error
        return self.funding_logs.get(topics[1])

    async def build_call_transaction(self, address, abi, selector, args, sender):
        await asyncio.sleep(0)
        nonce = self._nonce
        self._nonce += 1
        data = Web3.to_hex(Web3.keccak(text=selector)[:4] + nonce.to_bytes(32, "big"))
        self.built.append((selector, data[2:], tuple(args)))
        return {
            "to": address,
            "data": data,
            "value": 0,
            "gas": 200_000,
            "gasPrice": 1_000_000_000,
            "nonce": nonce,
            "chainId": 1,
        }

    def _selector_for(self, raw_transaction: str) -> str:
        raw = raw_transaction.lower()
        for selector, data, _ in self.built:
            if data in raw:
                return selector
        raise AssertionError("raw transaction was not built by this chain")

    async def submit_transaction(self, signed: SignedPayload) -> str:
        selector = self._selector_for(signed.raw_transaction)
        self.submissions.append((selector, signed.tx_hash))
        queue = self.outcomes.get(selector) or []
        outcome = queue.pop(0) if queue else "finalized"
        if outcome == "reject":
            raise SubmissionError("node rejected payload")
        self.tx_status[signed.tx_hash] = _STATUS_FOR_OUTCOME[outcome]
        return signed.tx_hash

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        await asyncio.sleep(0)
        return self.tx_status.get(tx_hash, TxStatus.NOT_FOUND)

    async def ensure_broadcast(self, tx_hash: str, raw_transaction: str | None) -> TxStatus:
        status = await self.get_transaction_status(tx_hash)
        if status is TxStatus.NOT_FOUND and raw_transaction:
            await self.submit_transaction(SignedPayload(raw_transaction=raw_transaction, tx_hash=tx_hash))
            return TxStatus.PENDING
        return status

    async def wait_for_finality(self, tx_hash: str, timeout: float) -> TxStatus:
        await asyncio.sleep(0)
        status = self.tx_status.get(tx_hash, TxStatus.NOT_FOUND)
        if status in TERMINAL_TX_STATUSES:
            return status
        raise FinalityTimeoutError(tx_hash, timeout)

    def submitted(self, selector: str) -> list[str]:
        return [tx_hash for name, tx_hash in self.submissions if name == selector]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SettlementStore(session_factory)


@pytest.fixture
def tokens():
    return TokenRegistry(settings.token_addresses)


@pytest.fixture
def signer():
    return OperatorSigner(TEST_KEY)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def policy():
    return RetryPolicy(
        funding_max_checks=3,
        funding_window_seconds=600,
        settlement_max_attempts=3,
        settlement_backoff_seconds=0.0,
        chain_max_deferrals=3,
        finality_timeout_seconds=1.0,
    )


@pytest.fixture
def make_orchestrator(store, tokens, chain, policy):
    def build(signer=None, policy_override=None):
        op_signer = signer or OperatorSigner(TEST_KEY)
        gateway = PaymentGatewayAdapter(chain, op_signer, tokens, settings.payment_gateway_address)
        router = SwapRouter(chain, op_signer, tokens, settings.swap_router_address)
        return SettlementOrchestrator(store, tokens, gateway, router, policy=policy_override or policy)

    return build


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def fund(chain, tokens):
    """Write the gateway record the pay page would create for an intent."""

    def write(intent, payer=None, token=None, amount=None, status=PAYMENT_STATUS_FUNDED, funding_tx=None):
        reference = payment_reference(intent.intent_id)
        if funding_tx is not None:
            chain.funding_logs[Web3.to_hex(reference)] = funding_tx
        chain.records[reference] = (
            payer or intent.payer_address,
            tokens.resolve(token or intent.token),
            intent.amount if amount is None else amount,
            status,
        )

    return write


