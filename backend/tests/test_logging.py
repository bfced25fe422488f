import json
import logging
import os
from decimal import Decimal

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ["SKIP_MIGRATIONS"] = "1"

from affiliate_engine.core.logging import (  # noqa: E402
    PACKAGE_LOGGER,
    REQUEST_ID_HEADER,
    JsonLogFormatter,
    configure_logging,
)
from affiliate_engine.main import app  # noqa: E402


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("affiliate_engine.core.commissions", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_extra_fields_as_json():
    line = JsonLogFormatter().format(
        _record("commission.created", commission_id=7, amount=Decimal("30.00"), click_id=None)
    )

    payload = json.loads(line)
    assert payload["event"] == "commission.created"
    assert payload["logger"] == "affiliate_engine.core.commissions"
    assert payload["commission_id"] == 7
    assert payload["amount"] == "30.00"
    assert "click_id" not in payload
    assert "lineno" not in payload


def test_configure_logging_attaches_a_single_json_handler():
    configure_logging("DEBUG")
    package_logger = configure_logging("INFO")

    json_handlers = [h for h in package_logger.handlers if isinstance(h.formatter, JsonLogFormatter)]
    assert package_logger.name == PACKAGE_LOGGER
    assert len(json_handlers) == 1
    assert package_logger.level == logging.INFO


def test_requests_get_a_request_id():
    client = TestClient(app)

    generated = client.get("/health")
    echoed = client.get("/health", headers={REQUEST_ID_HEADER: "req-123"})

    assert len(generated.headers[REQUEST_ID_HEADER]) == 32
    assert echoed.headers[REQUEST_ID_HEADER] == "req-123"
