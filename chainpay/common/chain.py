"""Thin async adapter over the single configured JSON-RPC node.

Everything the settlement service does on-chain goes through `ChainClient`:
contract reads, building contract-call transactions for the operator to sign,
broadcasting signed payloads and polling them to finality. Callers only ever
see the error taxonomy in `chainpay.common.errors`, never raw node payloads.
"""

import asyncio
from enum import Enum
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound

from chainpay.common.errors import (
    ChainUnavailableError,
    ContractRevertError,
    FinalityTimeoutError,
    SubmissionError,
)
from chainpay.common.logging import logger
from chainpay.common.signer import SignedPayload


class TxStatus(str, Enum):
    NOT_FOUND = "not_found"
    PENDING = "pending"
    INCLUDED = "included"
    FINALIZED = "finalized"
    REVERTED = "reverted"


TERMINAL_TX_STATUSES = frozenset({TxStatus.FINALIZED, TxStatus.REVERTED})

# Node replies meaning "this exact payload is already in the mempool".
_ALREADY_KNOWN_MARKERS = ("already known", "known transaction", "already imported")


class ChainClient:
    """Reads, submits and waits on transactions through one RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        finality_confirmations: int = 12,
        poll_interval_seconds: float = 3.0,
        request_timeout: int = 10,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.finality_confirmations = max(1, finality_confirmations)
        self.poll_interval_seconds = poll_interval_seconds
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))

    def _function(self, address: str, abi: list[dict], selector: str, args: tuple | list):
        contract = self.web3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
        return getattr(contract.functions, selector)(*args)

    async def read_contract_state(self, address: str, abi: list[dict], selector: str, args: tuple | list = ()) -> Any:
        """Call a view function and return its decoded result."""

        try:
            return await self._function(address, abi, selector, args).call()
        except ContractLogicError as exc:
            raise ContractRevertError(f"{selector} reverted") from exc
        except Exception as exc:
            raise ChainUnavailableError(f"{selector} read failed: {type(exc).__name__}") from exc

    async def build_call_transaction(
        self,
        address: str,
        abi: list[dict],
        selector: str,
        args: tuple | list,
        sender: str,
    ) -> dict:
        """Build an unsigned contract-call transaction (nonce, gas, fees, chainId)."""

        fn = self._function(address, abi, selector, args)
        try:
            nonce = await self.web3.eth.get_transaction_count(sender, "pending")
            return await fn.build_transaction({"from": sender, "nonce": nonce, "chainId": self.chain_id})
        except ContractLogicError as exc:
            raise ContractRevertError(f"{selector} gas estimation reverted") from exc
        except Exception as exc:
            raise ChainUnavailableError(f"{selector} build failed: {type(exc).__name__}") from exc

    async def submit_transaction(self, signed: SignedPayload) -> str:
        """Broadcast a signed payload; returns its transaction hash."""

        try:
            tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            if any(marker in str(exc).lower() for marker in _ALREADY_KNOWN_MARKERS):
                logger.info("tx_already_known tx_hash=%s", signed.tx_hash)
                return signed.tx_hash
            raise SubmissionError(f"node rejected {signed.tx_hash}: {type(exc).__name__}") from exc
        return AsyncWeb3.to_hex(tx_hash)

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        """Classify a transaction; `NOT_FOUND` is normal right after submission."""

        try:
            receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None
        except Exception as exc:
            raise ChainUnavailableError(f"receipt lookup failed: {type(exc).__name__}") from exc

        if receipt is None:
            try:
                await self.web3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return TxStatus.NOT_FOUND
            except Exception as exc:
                raise ChainUnavailableError(f"tx lookup failed: {type(exc).__name__}") from exc
            return TxStatus.PENDING

        if receipt["status"] == 0:
            return TxStatus.REVERTED
        try:
            head = await self.web3.eth.block_number
        except Exception as exc:
            raise ChainUnavailableError(f"block number failed: {type(exc).__name__}") from exc
        confirmations = head - receipt["blockNumber"] + 1
        if confirmations >= self.finality_confirmations:
            return TxStatus.FINALIZED
        return TxStatus.INCLUDED

    async def ensure_broadcast(self, tx_hash: str, raw_transaction: str | None) -> TxStatus:
        """Rebroadcast a recorded payload only if the node has never seen it.

        Resending the identical signed bytes cannot execute twice: the hash and
        nonce are fixed, so at most one copy is ever mined.
        """

        status = await self.get_transaction_status(tx_hash)
        if status is TxStatus.NOT_FOUND and raw_transaction:
            await self.submit_transaction(SignedPayload(raw_transaction=raw_transaction, tx_hash=tx_hash))
            return TxStatus.PENDING
        return status

    async def wait_for_finality(self, tx_hash: str, timeout: float) -> TxStatus:
        """Poll until FINALIZED or REVERTED, bounded by `timeout` seconds.

        Cancellation propagates from the sleep; transient lookup failures and
        NOT_FOUND (propagation delay, reorg) are tolerated until the deadline.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            try:
                status = await self.get_transaction_status(tx_hash)
            except ChainUnavailableError as exc:
                logger.warning("finality_poll_error tx_hash=%s error=%s", tx_hash, exc)
                status = None
            if status in TERMINAL_TX_STATUSES:
                return status
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise FinalityTimeoutError(tx_hash, timeout)
            await asyncio.sleep(min(self.poll_interval_seconds, remaining))

    async def latest_log_tx_hash(self, address: str, topics: list[str], lookback_blocks: int) -> str | None:
        """Hash of the newest transaction that emitted a log matching `topics`."""

        try:
            head = await self.web3.eth.block_number
            logs = await self.web3.eth.get_logs(
                {
                    "address": AsyncWeb3.to_checksum_address(address),
                    "topics": topics,
                    "fromBlock": max(0, head - lookback_blocks),
                    "toBlock": head,
                }
            )
        except Exception as exc:
            raise ChainUnavailableError(f"log query failed: {type(exc).__name__}") from exc
        if not logs:
            return None
        return AsyncWeb3.to_hex(logs[-1]["transactionHash"])
