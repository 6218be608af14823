"""Testes de logging estruturado e correlation-id."""

from __future__ import annotations

import json
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from advisor_billing.observability.logging import (
    CorrelationIdFilter,
    configure_logging,
    short_id,
)
from advisor_billing.observability.middleware import (
    CorrelationIdMiddleware,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture()
def root_logger():
    """Restaura handlers/level do root após configure_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def _record(message: str = "billing_started") -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, message, None, None)


def _ping_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/ping")
    def ping() -> dict[str, str]:
        return {"correlation_id": get_correlation_id()}

    return app


def test_short_id_truncates() -> None:
    assert short_id("0123456789abcdef") == "01234567..."


def test_filter_injects_service_and_correlation_id() -> None:
    set_correlation_id("corr-123")
    record = _record()

    assert CorrelationIdFilter("advisor_billing").filter(record) is True
    assert record.correlation_id == "corr-123"
    assert record.service == "advisor_billing"


def test_filter_keeps_explicit_correlation_id() -> None:
    set_correlation_id("corr-ctx")
    record = _record()
    record.correlation_id = "corr-task"

    CorrelationIdFilter("advisor_billing").filter(record)

    assert record.correlation_id == "corr-task"


def test_json_formatter_emits_structured_fields(root_logger: logging.Logger) -> None:
    set_correlation_id("corr-json")
    configure_logging("INFO", "advisor_billing")
    handler = root_logger.handlers[0]
    record = _record()
    record.session_id = short_id("0123456789abcdef")
    handler.filter(record)

    payload = json.loads(handler.format(record))

    assert payload["message"] == "billing_started"
    assert payload["level"] == "INFO"
    assert payload["service"] == "advisor_billing"
    assert payload["correlation_id"] == "corr-json"
    assert payload["session_id"] == "01234567..."


def test_text_format_for_local_development(root_logger: logging.Logger) -> None:
    configure_logging("DEBUG", "advisor_billing", log_format="text")

    handler = root_logger.handlers[0]
    assert type(handler.formatter) is logging.Formatter
    assert root_logger.level == logging.DEBUG


def test_middleware_propagates_incoming_header() -> None:
    response = TestClient(_ping_app()).get("/ping", headers={"x-correlation-id": "abc"})

    assert response.json() == {"correlation_id": "abc"}
    assert response.headers["x-correlation-id"] == "abc"


def test_middleware_generates_id_when_missing() -> None:
    response = TestClient(_ping_app()).get("/ping")

    generated = response.headers["x-correlation-id"]
    assert generated
    assert response.json()["correlation_id"] == generated
