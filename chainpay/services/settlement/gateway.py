"""Payment-gateway contract adapter.

Funding is proven by the gateway's own record for the intent (keyed by
`payment_reference(intent_id)`), optionally backed by the client's funding
transaction hash. Settlement is a single `settlePayment` call signed by the
operator.
"""

from dataclasses import dataclass

from web3 import Web3

from chainpay.common.chain import ChainClient, TxStatus
from chainpay.common.errors import (
    ChainUnavailableError,
    ContractRevertError,
    FundingMismatchError,
    FundingNotFoundError,
    SettlementError,
    SettlementRevertedError,
    SubmissionError,
)
from chainpay.common.logging import logger
from chainpay.common.signer import OperatorSigner, SignedPayload
from chainpay.common.tokens import TokenRegistry
from chainpay.services.settlement.abi import (
    PAYMENT_FUNDED_SIGNATURE,
    PAYMENT_GATEWAY_ABI,
    PAYMENT_STATUS_FUNDED,
    PAYMENT_STATUS_NONE,
)
from chainpay.services.settlement.models import PaymentIntent


def payment_reference(intent_id: str) -> bytes:
    """bytes32 key the pay page passes to the gateway contract."""

    return bytes(Web3.keccak(text=intent_id))


@dataclass(frozen=True)
class FundingEvidence:
    reference: bytes
    payer: str
    token_address: str
    amount: int
    tx_hash: str | None = None


class PaymentGatewayAdapter:
    """Reads funding records from and settles through the gateway contract."""

    def __init__(
        self,
        chain: ChainClient,
        signer: OperatorSigner,
        tokens: TokenRegistry,
        gateway_address: str,
        finality_timeout_seconds: float = 120.0,
        funding_log_lookback_blocks: int = 50_000,
    ) -> None:
        self.chain = chain
        self.signer = signer
        self.tokens = tokens
        self.gateway_address = Web3.to_checksum_address(gateway_address)
        self.finality_timeout_seconds = finality_timeout_seconds
        self.funding_log_lookback_blocks = funding_log_lookback_blocks

    async def verify_funding(self, intent: PaymentIntent, funding_tx_hash: str | None = None) -> FundingEvidence:
        """Prove the intent is funded exactly as requested.

        Raises `FundingNotFoundError` while the funds are not (yet) visible and
        `FundingMismatchError` when the on-chain record contradicts the intent.
        """

        if funding_tx_hash:
            status = await self.chain.get_transaction_status(funding_tx_hash)
            if status not in (TxStatus.INCLUDED, TxStatus.FINALIZED):
                raise FundingNotFoundError(f"funding tx {funding_tx_hash} is {status.value}")

        reference = payment_reference(intent.intent_id)
        try:
            payer, token, amount, status = await self.chain.read_contract_state(
                self.gateway_address, PAYMENT_GATEWAY_ABI, "getPayment", (reference,)
            )
        except ContractRevertError as exc:
            raise FundingNotFoundError("gateway has no record for this intent") from exc
        if status == PAYMENT_STATUS_NONE:
            raise FundingNotFoundError("gateway has no record for this intent")

        expected_token = self.tokens.resolve(intent.token)
        mismatches = []
        if status != PAYMENT_STATUS_FUNDED:
            mismatches.append("status")
        if payer.lower() != intent.payer_address.lower():
            mismatches.append("payer")
        if token.lower() != expected_token.lower():
            mismatches.append("token")
        if int(amount) != intent.amount:
            mismatches.append("amount")
        if mismatches:
            logger.warning("funding_mismatch fields=%s", ",".join(mismatches))
            raise FundingMismatchError(f"gateway record differs on {', '.join(mismatches)}")

        return FundingEvidence(
            reference=reference,
            payer=Web3.to_checksum_address(payer),
            token_address=expected_token,
            amount=int(amount),
            tx_hash=funding_tx_hash or await self._funding_tx_from_logs(reference),
        )

    async def _funding_tx_from_logs(self, reference: bytes) -> str | None:
        # The gateway record already proves funding; the hash is for the audit trail.
        topics = [Web3.to_hex(Web3.keccak(text=PAYMENT_FUNDED_SIGNATURE)), Web3.to_hex(reference)]
        try:
            return await self.chain.latest_log_tx_hash(self.gateway_address, topics, self.funding_log_lookback_blocks)
        except ChainUnavailableError as exc:
            logger.warning("funding_log_lookup_failed error=%s", exc)
            return None

    def evidence_for(self, intent: PaymentIntent) -> FundingEvidence:
        """Evidence rebuilt from persisted fields of an already verified intent."""

        return FundingEvidence(
            reference=payment_reference(intent.intent_id),
            payer=intent.payer_address,
            token_address=self.tokens.resolve(intent.token),
            amount=intent.amount,
            tx_hash=intent.chain_tx_hash,
        )

    async def prepare_settlement(self, intent: PaymentIntent, evidence: FundingEvidence) -> SignedPayload:
        settlement_token = self.tokens.resolve(intent.settlement_token)
        try:
            tx = await self.chain.build_call_transaction(
                self.gateway_address,
                PAYMENT_GATEWAY_ABI,
                "settlePayment",
                (evidence.reference, settlement_token),
                self.signer.address,
            )
        except ContractRevertError as exc:
            raise SettlementRevertedError("settlePayment gas estimation reverted") from exc
        return self.signer.sign(tx)

    async def await_settlement(self, tx_hash: str, raw_transaction: str | None, timeout: float | None = None) -> TxStatus:
        """Broadcast if needed and wait for finality.

        A mined revert raises `SettlementRevertedError`; a rejected broadcast
        raises plain `SettlementError` (the payload itself is still usable).
        """

        try:
            await self.chain.ensure_broadcast(tx_hash, raw_transaction)
        except SubmissionError as exc:
            raise SettlementError(f"settlement tx {tx_hash} rejected by node") from exc
        status = await self.chain.wait_for_finality(tx_hash, timeout or self.finality_timeout_seconds)
        if status is TxStatus.REVERTED:
            raise SettlementRevertedError(f"settlement tx {tx_hash} reverted")
        return status

    async def settle(self, intent: PaymentIntent, evidence: FundingEvidence) -> str:
        signed = await self.prepare_settlement(intent, evidence)
        await self.await_settlement(signed.tx_hash, signed.raw_transaction)
        return signed.tx_hash
