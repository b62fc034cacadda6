"""Settlement error taxonomy.

Every error carries a stable `reason` code. Reason codes are what gets
persisted into `failure_reason`, returned to callers and logged; exception
messages may hold node detail and stay out of responses.
"""


class SettlementPipelineError(Exception):
    """Base class for everything the orchestrator knows how to map."""

    reason = "internal-error"
    retryable = False

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


class ValidationError(SettlementPipelineError):
    """Bad pay request input, rejected before any chain interaction."""

    reason = "invalid-request"


class UnknownTokenError(ValidationError):
    reason = "unknown-token"

    def __init__(self, symbol: str):
        super().__init__(f"token {symbol!r} is not configured")
        self.symbol = symbol


class TransientError(SettlementPipelineError):
    """Retryable within the configured budget."""

    retryable = True


class FundingNotFoundError(TransientError):
    reason = "funding-not-found"


class FinalityTimeoutError(TransientError, TimeoutError):
    """Transaction did not reach a terminal status before the wait deadline."""

    reason = "finality-timeout"

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"tx {tx_hash} not final after {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class ChainUnavailableError(TransientError):
    """Transport-level RPC failure (node down, HTTP timeout, bad gateway)."""

    reason = "chain-unavailable"


class ContractRevertError(SettlementPipelineError):
    """A contract call or gas estimation reverted."""

    reason = "contract-reverted"


class FundingMismatchError(SettlementPipelineError):
    """On-chain funding contradicts the intent (payer, token or amount)."""

    reason = "funding-mismatch"


class SwapError(SettlementPipelineError):
    reason = "swap-failed"


class SigningError(SettlementPipelineError):
    reason = "signing-failed"


class SubmissionError(SettlementPipelineError):
    """Node rejected a signed payload (nonce conflict, fee too low, malformed)."""

    reason = "submission-failed"


class SettlementError(SettlementPipelineError):
    reason = "settlement-failed"


class SettlementRevertedError(SettlementError):
    """The settlement tx was mined and reverted; its nonce is spent."""


class ConcurrencyConflict(Exception):
    """A compare-and-swap write lost against another worker. Internal only."""

    def __init__(self, intent_id: str, expected_state: str, expected_version: int):
        super().__init__(
            f"optimistic concurrency conflict for intent {intent_id} "
            f"(expected {expected_state}@{expected_version})"
        )
        self.intent_id = intent_id
        self.expected_state = expected_state
        self.expected_version = expected_version


class IntentNotFound(LookupError):
    pass
