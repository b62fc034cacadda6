"""API request/response schemas for settlement endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class PayRequest(BaseModel):
    """Intent creation payload accepted from the gateway.

    Address, token and amount rules are checked by the orchestrator so that
    they map to reason codes rather than framework validation errors.
    """

    payer_address: str
    token: str = Field(min_length=1, max_length=16)
    amount: int
    settlement_token: str = Field(min_length=1, max_length=16)
    reference: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=512)
    callback_url: str | None = Field(default=None, max_length=2048)


class ConfirmRequest(BaseModel):
    funding_tx_hash: str | None = Field(default=None, pattern=r"^0x[0-9a-fA-F]{64}$")


class PayResponse(BaseModel):
    intent_id: str
    state: str
    expires_at: datetime


class ConfirmResponse(BaseModel):
    intent_id: str
    state: str
    settlement_tx_hash: str | None = None
    failure_reason: str | None = None


class IntentResponse(ConfirmResponse):
    """Full view of one intent for status polling."""

    reference: str | None = None
    payer_address: str
    token: str
    amount: str
    settlement_token: str
    chain_tx_hash: str | None = None
    swap_tx_hash: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReconcileResponse(BaseModel):
    scanned: int
    advanced: int
    errors: int
