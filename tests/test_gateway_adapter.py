"""Payment gateway adapter: funding evidence and settlement calls."""

import pytest
from web3 import Web3

from chainpay.common.chain import TxStatus
from chainpay.common.config import settings
from chainpay.common.errors import (
    ChainUnavailableError,
    ContractRevertError,
    FundingMismatchError,
    FundingNotFoundError,
    SettlementError,
    SettlementRevertedError,
)
from chainpay.services.settlement.abi import PAYMENT_STATUS_SETTLED
from chainpay.services.settlement.gateway import PaymentGatewayAdapter, payment_reference

PAYER = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
OTHER = "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0"


@pytest.fixture
def gateway(chain, signer, tokens):
    return PaymentGatewayAdapter(chain, signer, tokens, settings.payment_gateway_address)


@pytest.fixture
def intent(store):
    created, _ = store.create(payer_address=PAYER, token="USDC", amount=1_000_000, settlement_token="USDC")
    return created


def test_payment_reference_is_keccak_of_intent_id():
    reference = payment_reference("intent-1")

    assert len(reference) == 32
    assert reference == bytes(Web3.keccak(text="intent-1"))
    assert reference != payment_reference("intent-2")


@pytest.mark.asyncio
async def test_verify_funding_returns_evidence(gateway, intent, fund, tokens):
    fund(intent)

    evidence = await gateway.verify_funding(intent)

    assert evidence.reference == payment_reference(intent.intent_id)
    assert evidence.payer == PAYER
    assert evidence.token_address == tokens.resolve("USDC")
    assert evidence.amount == 1_000_000
    assert evidence.tx_hash is None


@pytest.mark.asyncio
async def test_verify_funding_finds_tx_hash_in_gateway_logs(gateway, intent, fund):
    funding_tx = "0x" + "9" * 64
    fund(intent, funding_tx=funding_tx)

    evidence = await gateway.verify_funding(intent)

    assert evidence.tx_hash == funding_tx


@pytest.mark.asyncio
async def test_log_lookup_failure_does_not_block_funding(gateway, intent, fund, chain):
    fund(intent, funding_tx="0x" + "9" * 64)
    chain.log_error = ChainUnavailableError("eth_getLogs range too large")

    evidence = await gateway.verify_funding(intent)

    assert evidence.amount == 1_000_000
    assert evidence.tx_hash is None


@pytest.mark.asyncio
async def test_verify_funding_payer_comparison_ignores_case(gateway, intent, fund):
    fund(intent, payer=PAYER.lower())

    evidence = await gateway.verify_funding(intent)

    assert evidence.payer == PAYER


@pytest.mark.asyncio
async def test_missing_record_is_not_found(gateway, intent):
    with pytest.raises(FundingNotFoundError) as excinfo:
        await gateway.verify_funding(intent)
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_reverting_lookup_is_not_found(gateway, intent, chain):
    chain.read_error = ContractRevertError("getPayment reverted")

    with pytest.raises(FundingNotFoundError):
        await gateway.verify_funding(intent)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": 999_999},
        {"payer": OTHER},
        {"token": "USDT"},
        {"status": PAYMENT_STATUS_SETTLED},
    ],
)
async def test_contradicting_record_is_mismatch(gateway, intent, fund, overrides):
    fund(intent, **overrides)

    with pytest.raises(FundingMismatchError) as excinfo:
        await gateway.verify_funding(intent)
    assert excinfo.value.reason == "funding-mismatch"
    assert not excinfo.value.retryable


@pytest.mark.asyncio
async def test_funding_tx_hash_must_be_included(gateway, intent, fund, chain):
    fund(intent)
    funding_tx = "0x" + "11" * 32

    with pytest.raises(FundingNotFoundError):
        await gateway.verify_funding(intent, funding_tx)

    chain.tx_status[funding_tx] = TxStatus.REVERTED
    with pytest.raises(FundingNotFoundError):
        await gateway.verify_funding(intent, funding_tx)

    chain.tx_status[funding_tx] = TxStatus.INCLUDED
    evidence = await gateway.verify_funding(intent, funding_tx)
    assert evidence.tx_hash == funding_tx


def test_evidence_for_rebuilds_from_persisted_fields(gateway, intent, tokens):
    evidence = gateway.evidence_for(intent)

    assert evidence.reference == payment_reference(intent.intent_id)
    assert evidence.token_address == tokens.resolve(intent.token)
    assert evidence.amount == intent.amount


@pytest.mark.asyncio
async def test_prepare_settlement_targets_settle_payment(gateway, intent, chain, tokens):
    signed = await gateway.prepare_settlement(intent, gateway.evidence_for(intent))

    selector, _, args = chain.built[-1]
    assert selector == "settlePayment"
    assert args == (payment_reference(intent.intent_id), tokens.resolve("USDC"))
    assert signed.tx_hash.startswith("0x")
    assert chain.submissions == []


@pytest.mark.asyncio
async def test_settle_broadcasts_and_waits(gateway, intent, chain):
    tx_hash = await gateway.settle(intent, gateway.evidence_for(intent))

    assert chain.submitted("settlePayment") == [tx_hash]
    assert chain.tx_status[tx_hash] is TxStatus.FINALIZED


@pytest.mark.asyncio
async def test_await_settlement_maps_revert_and_rejection(gateway, intent, chain):
    chain.outcomes["settlePayment"] = ["reverted"]
    signed = await gateway.prepare_settlement(intent, gateway.evidence_for(intent))
    with pytest.raises(SettlementRevertedError):
        await gateway.await_settlement(signed.tx_hash, signed.raw_transaction, timeout=1.0)

    chain.outcomes["settlePayment"] = ["reject"]
    signed = await gateway.prepare_settlement(intent, gateway.evidence_for(intent))
    with pytest.raises(SettlementError) as excinfo:
        await gateway.await_settlement(signed.tx_hash, signed.raw_transaction, timeout=1.0)
    assert not isinstance(excinfo.value, SettlementRevertedError)
    assert excinfo.value.reason == "settlement-failed"
