"""Operator signer: offline signing and credential hygiene."""

import logging

import pytest
from eth_account import Account

from chainpay.common.errors import SigningError
from chainpay.common.signer import OperatorSigner

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TX = {
    "to": "0x00000000000000000000000000000000000000a1",
    "data": "0x12345678",
    "value": 0,
    "gas": 100_000,
    "gasPrice": 1_000_000_000,
    "nonce": 0,
    "chainId": 1,
}


def test_sign_produces_recoverable_payload():
    signer = OperatorSigner(TEST_KEY)

    signed = signer.sign(TX)

    assert signed.raw_transaction.startswith("0x")
    assert len(signed.tx_hash) == 66
    assert Account.recover_transaction(signed.raw_transaction) == signer.address


def test_key_without_prefix_is_accepted():
    assert OperatorSigner(TEST_KEY[2:]).address == OperatorSigner(TEST_KEY).address


def test_signing_is_deterministic_for_identical_transactions():
    signer = OperatorSigner(TEST_KEY)

    assert signer.sign(TX) == signer.sign(dict(TX))


@pytest.mark.parametrize("key", [None, "", "0xnot-a-key"])
def test_missing_or_malformed_key_disables_signing(key):
    signer = OperatorSigner(key)

    assert not signer.available
    with pytest.raises(SigningError) as excinfo:
        signer.sign(TX)
    assert excinfo.value.reason == "signing-failed"
    with pytest.raises(SigningError):
        signer.address


def test_key_never_appears_in_repr_or_logs(caplog):
    caplog.set_level(logging.DEBUG)
    signer = OperatorSigner(TEST_KEY)
    OperatorSigner("0x" + "zz" * 32)

    assert TEST_KEY[2:] not in repr(signer)
    assert "redacted" in repr(signer)
    assert TEST_KEY[2:] not in caplog.text
    assert "zz" * 32 not in caplog.text


def test_payload_matches_eth_account_signature():
    expected = Account.sign_transaction(TX, TEST_KEY)

    signed = OperatorSigner(TEST_KEY).sign(TX)

    assert signed.raw_transaction == "0x" + bytes(expected.raw_transaction).hex()
    assert signed.tx_hash == "0x" + bytes(expected.hash).hex()
