"""Operator signing identity.

The private key is parsed once when the process starts and then only read.
It is never logged, serialized into the store, or echoed in responses.
"""

from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from chainpay.common.errors import SigningError
from chainpay.common.logging import logger


@dataclass(frozen=True)
class SignedPayload:
    """Signed raw transaction (0x hex) and its transaction hash."""

    raw_transaction: str
    tx_hash: str


class OperatorSigner:
    """Signs outbound swap/settlement transactions with the operator key."""

    def __init__(self, private_key: str | None) -> None:
        self._account: LocalAccount | None = None
        if not private_key:
            logger.warning("operator_key_absent signing disabled")
            return
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError):
            # error text may quote key material; never chain it
            logger.error("operator_key_malformed signing disabled")

    def __repr__(self) -> str:
        return f"OperatorSigner(address={self._account.address if self._account else None}, key=<redacted>)"

    @property
    def available(self) -> bool:
        return self._account is not None

    @property
    def address(self) -> str:
        if self._account is None:
            raise SigningError("operator credential is absent or malformed")
        return self._account.address

    def sign(self, transaction: dict) -> SignedPayload:
        """Sign a fully built transaction dict (nonce, gas, fees, chainId set)."""

        if self._account is None:
            raise SigningError("operator credential is absent or malformed")
        try:
            signed = self._account.sign_transaction(transaction)
        except (ValueError, TypeError, KeyError) as exc:
            raise SigningError(f"could not sign transaction: {type(exc).__name__}") from None
        return SignedPayload(raw_transaction=Web3.to_hex(signed.raw_transaction), tx_hash=Web3.to_hex(signed.hash))
