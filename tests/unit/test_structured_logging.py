import io
import json
import logging

import pytest

from shared.logging import JsonFormatter, configure_logging, log_event, log_exception, trace_id_var

pytestmark = [pytest.mark.unit]


def make_test_logger(service: str) -> tuple[logging.Logger, io.StringIO]:
    """Create a logger with JsonFormatter that writes to a StringIO buffer."""
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    handler.setFormatter(JsonFormatter(service))
    logger = logging.getLogger(f"test_{service}_{id(buf)}")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, buf


def get_log_line(buf: io.StringIO) -> dict:
    """Parse the last JSON log line from buffer."""
    buf.seek(0)
    lines = [line.strip() for line in buf.readlines() if line.strip()]
    return json.loads(lines[-1])


def test_json_formatter_produces_valid_json():
    logger, buf = make_test_logger("billing")
    logger.info("hello world")
    line = get_log_line(buf)
    assert line["msg"] == "hello world"
    assert line["level"] == "INFO"
    assert line["service"] == "billing"
    assert line["ts"].endswith("Z")


def test_json_formatter_includes_extra_fields():
    logger, buf = make_test_logger("billing")
    logger.info("credits granted", extra={"customer_id": "cus_1", "credits": 2000})
    line = get_log_line(buf)
    assert line["customer_id"] == "cus_1"
    assert line["credits"] == 2000


def test_json_formatter_warning_level():
    logger, buf = make_test_logger("billing")
    logger.warning("duplicate webhook", extra={"event_id": "evt_1"})
    line = get_log_line(buf)
    assert line["level"] == "WARNING"
    assert line["event_id"] == "evt_1"


def test_json_formatter_includes_trace_id():
    logger, buf = make_test_logger("billing")
    token = trace_id_var.set("trace-abc")
    try:
        logger.info("inside request")
    finally:
        trace_id_var.reset(token)
    assert get_log_line(buf)["trace_id"] == "trace-abc"


def test_json_formatter_serializes_exceptions():
    logger, buf = make_test_logger("billing")
    try:
        raise RuntimeError("stripe down")
    except RuntimeError:
        logger.exception("call failed")
    line = get_log_line(buf)
    assert line["level"] == "ERROR"
    assert "RuntimeError: stripe down" in line["exc"]


def test_log_exception_helper():
    logger, buf = make_test_logger("billing")
    try:
        raise ValueError("bad price")
    except ValueError as exc:
        log_exception(logger, "operation failed", exc, context={"price_id": "price_x"})
    line = get_log_line(buf)
    assert line["level"] == "ERROR"
    assert line["error_type"] == "ValueError"
    assert line["error"] == "bad price"
    assert line["price_id"] == "price_x"


def test_log_event_helper():
    logger, buf = make_test_logger("billing")
    log_event(logger, "checkout started", level="INFO", user_id="user_1")
    line = get_log_line(buf)
    assert line["msg"] == "checkout started"
    assert line["user_id"] == "user_1"


def test_json_output_is_single_line():
    """Each log record must be exactly one line (no newlines in JSON output)."""
    logger, buf = make_test_logger("billing")
    logger.info("test message", extra={"key": "value with\nnewline"})
    buf.seek(0)
    lines = [line for line in buf.readlines() if line.strip()]
    assert len(lines) == 1


def test_configure_logging_installs_json_handler(monkeypatch):
    monkeypatch.delenv("SERVICE_NAME", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging("creditsync-billing", level="debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, JsonFormatter)
        assert formatter.service == "creditsync-billing"
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
