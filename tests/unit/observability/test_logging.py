"""
fleet-secrets — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate JSON-lines output, correlation field propagation, structlog routing,
  and redaction of secret-bearing fields.

Functional requirements
- Offline operation; every test shuts its logging session down.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from fleet_secrets.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _log_file(base: Path, run_id: str) -> Path:
    return base / run_id / "fleet-secrets.jsonl"


@pytest.mark.unit
def test_structlog_events_land_as_json_lines_with_correlation(tmp_path: Path) -> None:
    setup_logging({"log_level": "INFO"}, run_id="run-json", log_dir=tmp_path)
    logger = structlog.get_logger("fleet_secrets.tests")

    with correlation_scope(command="resolve"):
        with correlation_scope(target_id="rx-7"):
            logger.info("resolution_completed", status="degraded", sources={"placeholder": 1})
        logger.debug("not_written")

    shutdown_logging()
    records = _read_json_lines(_log_file(tmp_path, "run-json"))

    assert len(records) == 1
    record = records[0]
    assert record["message"] == "resolution_completed"
    assert record["level"] == "INFO"
    assert record["run_id"] == "run-json"
    assert record["target_id"] == "rx-7"
    assert record["command"] == "resolve"
    assert record["fields"] == {"sources": {"placeholder": 1}, "status": "degraded"}
    assert str(record["timestamp"]).endswith("Z")


@pytest.mark.unit
def test_secret_fields_and_text_are_redacted(tmp_path: Path) -> None:
    setup_logging({"log_level": "DEBUG"}, run_id="run-redact", log_dir=tmp_path)
    logger = logging.getLogger("fleet_secrets.tests.redact")

    logger.warning(
        "leaked turn_credential=abcdef123456 in message",
        extra={"details": {"api_token": "tok-123456", "key": "api_token"}},
    )

    shutdown_logging()
    text = _log_file(tmp_path, "run-redact").read_text(encoding="utf-8")
    record = json.loads(text)

    assert "abcdef123456" not in text
    assert "tok-123456" not in text
    assert record["fields"]["details"]["api_token"] == "***REDACTED***"
    assert record["fields"]["details"]["key"] == "api_token"


@pytest.mark.unit
def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    setup_logging({"redact_secrets": False}, run_id="run-raw", log_dir=tmp_path)
    logging.getLogger("fleet_secrets.tests.raw").info("token=visible-value")
    shutdown_logging()
    assert "visible-value" in _log_file(tmp_path, "run-raw").read_text(encoding="utf-8")


@pytest.mark.unit
def test_text_format_renders_single_lines(tmp_path: Path) -> None:
    setup_logging({"log_format": "text"}, run_id="run-text", log_dir=tmp_path)
    with correlation_scope(target_id="rx-8"):
        structlog.get_logger("fleet_secrets.tests").warning(
            "resolution_placeholder_fallback", key="endpoint"
        )
    shutdown_logging()

    line = _log_file(tmp_path, "run-text").read_text(encoding="utf-8").strip()

    assert "WARNING" in line
    assert "resolution_placeholder_fallback" in line
    assert "run_id=run-text" in line
    assert "target_id=rx-8" in line
    assert "key=endpoint" in line


@pytest.mark.unit
def test_correlation_scope_restores_previous_values() -> None:
    with correlation_scope(run_id="outer", target_id="rx-7"):
        with correlation_scope(target_id=None):
            assert get_correlation_context() == {"run_id": "outer"}
        assert get_correlation_context() == {"run_id": "outer", "target_id": "rx-7"}
    assert get_correlation_context() == {}


@pytest.mark.unit
def test_threaded_logging_keeps_per_thread_targets(tmp_path: Path) -> None:
    logger_name = f"fleet_secrets.tests.{uuid4().hex}"
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-threads", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    def worker(target_id: str) -> None:
        with correlation_scope(target_id=target_id):
            for index in range(20):
                logger.info("tick %d", index)

    threads = [threading.Thread(target=worker, args=(f"rx-{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    records = _read_json_lines(handle.log_path)
    assert len(records) == 80
    counts: dict[str, int] = {}
    for record in records:
        counts[str(record["target_id"])] = counts.get(str(record["target_id"]), 0) + 1
    assert counts == {"rx-0": 20, "rx-1": 20, "rx-2": 20, "rx-3": 20}
    assert handle.dropped_records == 0


@pytest.mark.unit
@pytest.mark.parametrize(
    "config",
    [
        LoggingConfig(run_id=" "),
        LoggingConfig(run_id="r", log_filename="a/b.jsonl"),
        LoggingConfig(run_id="r", queue_size=0),
        LoggingConfig(run_id="r", level="LOUD"),
    ],
)
def test_invalid_logging_config_is_rejected(config: LoggingConfig, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        setup_structured_logging(
            LoggingConfig(
                run_id=config.run_id,
                base_log_dir=tmp_path,
                log_filename=config.log_filename,
                queue_size=config.queue_size,
                level=config.level,
            )
        )
