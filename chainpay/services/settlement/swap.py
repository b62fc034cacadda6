"""Auto-swap contract adapter.

Converts the funded token into the merchant's settlement token. Swaps are
never retried here: any failure is reported to the orchestrator, which fails
the intent with the swap reason.
"""

from time import time

from web3 import Web3

from chainpay.common.chain import ChainClient, TxStatus
from chainpay.common.errors import ContractRevertError, SubmissionError, SwapError
from chainpay.common.signer import OperatorSigner, SignedPayload
from chainpay.common.tokens import TokenRegistry
from chainpay.services.settlement.abi import AUTO_SWAP_ABI
from chainpay.services.settlement.gateway import payment_reference
from chainpay.services.settlement.models import PaymentIntent

BPS_DENOMINATOR = 10_000


class SwapRouter:
    def __init__(
        self,
        chain: ChainClient,
        signer: OperatorSigner,
        tokens: TokenRegistry,
        router_address: str,
        slippage_bps: int = 50,
        deadline_seconds: int = 300,
        finality_timeout_seconds: float = 120.0,
    ) -> None:
        if not 0 <= slippage_bps < BPS_DENOMINATOR:
            raise ValueError("slippage_bps must be in [0, 10000)")
        self.chain = chain
        self.signer = signer
        self.tokens = tokens
        self.router_address = Web3.to_checksum_address(router_address)
        self.slippage_bps = slippage_bps
        self.deadline_seconds = deadline_seconds
        self.finality_timeout_seconds = finality_timeout_seconds

    def needs_swap(self, intent: PaymentIntent) -> bool:
        return intent.token.upper() != intent.settlement_token.upper()

    async def quote(self, intent: PaymentIntent) -> int:
        """Expected output amount for swapping the full intent amount."""

        token_in = self.tokens.resolve(intent.token)
        token_out = self.tokens.resolve(intent.settlement_token)
        try:
            amount_out = await self.chain.read_contract_state(
                self.router_address, AUTO_SWAP_ABI, "quote", (token_in, token_out, intent.amount)
            )
        except ContractRevertError as exc:
            raise SwapError("quote reverted", reason="swap-liquidity-exhausted") from exc
        if int(amount_out) <= 0:
            raise SwapError("quote returned zero", reason="swap-liquidity-exhausted")
        return int(amount_out)

    def min_amount_out(self, quoted: int) -> int:
        return quoted * (BPS_DENOMINATOR - self.slippage_bps) // BPS_DENOMINATOR

    async def prepare_swap(self, intent: PaymentIntent) -> SignedPayload:
        quoted = await self.quote(intent)
        args = (
            payment_reference(intent.intent_id),
            self.tokens.resolve(intent.token),
            self.tokens.resolve(intent.settlement_token),
            intent.amount,
            self.min_amount_out(quoted),
            int(time()) + self.deadline_seconds,
        )
        try:
            tx = await self.chain.build_call_transaction(
                self.router_address, AUTO_SWAP_ABI, "swapExactIn", args, self.signer.address
            )
        except ContractRevertError as exc:
            raise SwapError("swapExactIn gas estimation reverted", reason="swap-reverted") from exc
        return self.signer.sign(tx)

    async def await_swap(self, tx_hash: str, raw_transaction: str | None, timeout: float | None = None) -> TxStatus:
        try:
            await self.chain.ensure_broadcast(tx_hash, raw_transaction)
        except SubmissionError as exc:
            raise SwapError(f"swap tx {tx_hash} rejected by node", reason="swap-submission-failed") from exc
        status = await self.chain.wait_for_finality(tx_hash, timeout or self.finality_timeout_seconds)
        if status is TxStatus.REVERTED:
            raise SwapError(f"swap tx {tx_hash} reverted", reason="swap-reverted")
        return status

    async def swap(self, intent: PaymentIntent) -> str:
        signed = await self.prepare_swap(intent)
        await self.await_swap(signed.tx_hash, signed.raw_transaction)
        return signed.tx_hash
