"""
Tests for logging setup.
"""

import json
import logging

import pytest

from cf_optimizer.logging_config import StructuredFormatter, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers = handlers
    root.setLevel(level)


def test_console_only():
    root = setup_logging(log_level=logging.DEBUG)
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1


def test_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    root = setup_logging(log_file=log_file, enable_console=False)
    logging.getLogger("cf_optimizer.test").info("solved %d specialties", 3)
    for h in root.handlers:
        h.flush()
    text = log_file.read_text(encoding="utf-8")
    assert "cf_optimizer.test - INFO - solved 3 specialties" in text


def test_structured_output(tmp_path):
    log_file = tmp_path / "run.jsonl"
    setup_logging(log_file=log_file, enable_console=False, structured_output=True)
    logging.getLogger("cf_optimizer.test").warning("missing market: %s", "Podiatry")
    for h in logging.getLogger().handlers:
        h.flush()
    entry = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "cf_optimizer.test"
    assert entry["message"] == "missing market: Podiatry"


def test_formatter_extra_fields():
    fmt = StructuredFormatter(extra_fields={"scenario_id": "S-1"})
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
    assert json.loads(fmt.format(record))["scenario_id"] == "S-1"
