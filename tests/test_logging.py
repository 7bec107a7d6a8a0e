"""Tests for structured log output."""

import logging

from casesim.core.logging import StructuredFormatter, get_logger, log_with_context


def _record(msg="Ingested notes.txt", **attrs):
    record = logging.LogRecord("casesim.core.ingestion", logging.INFO, __file__, 10, msg, None, None)
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


def test_correlation_ids_come_before_extra_fields():
    line = StructuredFormatter().format(
        _record(case_id="case-1", attempt_id="att-1", extra_data={"chunks": 3})
    )

    assert 'message="Ingested notes.txt"' in line
    assert line.index("case_id=case-1") < line.index("attempt_id=att-1") < line.index("chunks=3")
    assert "job_id" not in line


def test_values_with_spaces_are_quoted():
    line = StructuredFormatter().format(_record(extra_data={"error": "model not found", "status": 404}))

    assert 'error="model not found"' in line
    assert "status=404" in line


def test_module_loggers_share_the_package_handler():
    logger = get_logger("casesim.core.retrieval")
    outside = get_logger("scripts.backfill")

    assert logger.name == "casesim.core.retrieval"
    assert outside.name == "casesim.scripts.backfill"
    assert not logger.handlers
    assert len(logging.getLogger("casesim").handlers) == 1


def test_log_with_context_splits_correlation_fields(monkeypatch):
    logger = get_logger("casesim.tests")
    captured = {}
    monkeypatch.setattr(logger, "log", lambda level, msg, extra: captured.update(extra, level=level))

    log_with_context(logger, logging.WARNING, "Fallback used", attempt_id="att-1", provider="gemini")

    assert captured["attempt_id"] == "att-1"
    assert captured["extra_data"] == {"provider": "gemini"}
    assert captured["level"] == logging.WARNING
