"""Tests for log formatters and logging setup."""

import json
import logging

import pytest

import janitor.logging_config as logging_config


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    if logging_config._handler is not None:
        root.removeHandler(logging_config._handler)
        logging_config._handler = None
    root.setLevel(level)


def _record():
    record = logging.LogRecord(
        name="janitor.reconciler",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="rebootnode status updated for node %s",
        args=("node-1",),
        exc_info=None,
    )
    record.retry_count = 3
    return record


def test_json_formatter():
    formatter = logging_config.JanitorJSONFormatter(controller_id="janitor-0")
    payload = json.loads(formatter.format(_record()))

    assert payload["service"] == "janitor"
    assert payload["controller_id"] == "janitor-0"
    assert payload["message"] == "rebootnode status updated for node node-1"
    assert payload["extra"] == {"retry_count": 3}


def test_text_formatter():
    message = logging_config.JanitorTextFormatter(controller_id="janitor-0").format(_record())

    assert "[janitor-0]" in message
    assert "rebootnode status updated for node node-1" in message


def test_setup_logging_json(monkeypatch):
    monkeypatch.setattr(logging_config.settings, "log_level", "DEBUG")
    monkeypatch.setattr(logging_config.settings, "log_format", "json")

    logging_config.setup_logging(controller_id="janitor-x")
    logging_config.setup_logging(controller_id="janitor-x")

    root = logging.getLogger()
    ours = [h for h in root.handlers if isinstance(h.formatter, logging_config.JanitorJSONFormatter)]
    assert len(ours) == 1
    assert root.level == logging.DEBUG


def test_setup_logging_text(monkeypatch):
    monkeypatch.setattr(logging_config.settings, "log_format", "text")

    logging_config.setup_logging()

    assert isinstance(logging_config._handler.formatter, logging_config.JanitorTextFormatter)
