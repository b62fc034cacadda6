"""Startup config logging and log context fields."""

import logging

from chainpay.common.logging import ContextFilter, intent_id_ctx, trace_id_ctx
from chainpay.common.startup import log_startup_config


def test_startup_config_redacts_credentials(caplog, monkeypatch):
    caplog.set_level(logging.INFO)
    monkeypatch.setenv("OPERATOR_PRIVATE_KEY", "0xdeadbeef")
    monkeypatch.setenv("DATABASE_DSN", "postgresql://user:hunter2@db/chainpay")
    monkeypatch.setenv("SETTLEMENT_URL", "http://settlement:8000")
    monkeypatch.delenv("CHAIN_RPC_URL", raising=False)

    log_startup_config(
        "settlement",
        ["OPERATOR_PRIVATE_KEY", "DATABASE_DSN", "SETTLEMENT_URL", "CHAIN_RPC_URL"],
    )

    assert "0xdeadbeef" not in caplog.text
    assert "hunter2" not in caplog.text
    assert "http://settlement:8000" in caplog.text
    assert "<unset>" in caplog.text


def test_context_filter_adds_correlation_ids():
    record = logging.LogRecord("chainpay", logging.INFO, __file__, 1, "msg", None, None)
    trace_token = trace_id_ctx.set("trace-1")
    intent_token = intent_id_ctx.set("intent-1")
    try:
        assert ContextFilter().filter(record)
    finally:
        trace_id_ctx.reset(trace_token)
        intent_id_ctx.reset(intent_token)

    assert record.trace_id == "trace-1"
    assert record.intent_id == "intent-1"
    assert record.event_id == ""
