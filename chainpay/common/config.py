"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Chain endpoints, contract
addresses, the operator key and the retry policy all live here so nothing
chain-specific is hard-coded in the services (see `.env.example`).
"""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    settlement_url: str = "http://settlement:8001"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    rate_limit_per_minute: int = 30
    idempotency_ttl_seconds: int = 86400

    # Chain boundary: one node, one gateway contract, one swap contract.
    rpc_url: str = "http://localhost:8545"
    chain_id: int = 1
    rpc_timeout_seconds: int = 10
    operator_private_key: SecretStr = SecretStr("")
    payment_gateway_address: str
    swap_router_address: str
    token_addresses: dict[str, str] = {}

    finality_confirmations: int = 12
    finality_timeout_seconds: float = 120.0
    finality_poll_seconds: float = 3.0

    # Retry policy. 10 funding checks inside a 10 minute window, 3 settlement
    # attempts with exponential backoff starting at 1s, and at most 5 finality
    # waits (or RPC outages) on an in-flight swap/settlement before it fails.
    funding_max_checks: int = 10
    funding_window_seconds: int = 600
    settlement_max_attempts: int = 3
    settlement_backoff_seconds: float = 1.0
    chain_max_deferrals: int = 5
    funding_log_lookback_blocks: int = 50_000

    swap_slippage_bps: int = 50
    swap_deadline_seconds: int = 300

    reconcile_interval_seconds: float = 30.0
    reconcile_batch_size: int = 100
    webhook_timeout_seconds: float = 5.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
