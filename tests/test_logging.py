"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from nvme_migrate import logging as logging_module


@pytest.fixture
def records():
    logging_module.logger.remove()
    captured: list[dict] = []

    def sink(message):
        captured.append(message.record)

    logging_module.logger.add(sink, level="TRACE", enqueue=False)
    yield captured
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path):
    """Test operations and structured logs are written under log_dir."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Hello")
    logging_module.logger.complete()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "structured.jsonl").exists()
    assert not (log_dir / "debug.log").exists()
    logging_module.logger.remove()


def test_trace_adds_debug_and_trace_files(tmp_path):
    logging_module.setup_logging(trace=True, log_dir=tmp_path)
    logging_module.logger.trace("raw output")
    logging_module.logger.complete()

    assert (tmp_path / "debug.log").exists()
    assert (tmp_path / "trace.log").exists()
    logging_module.logger.remove()


def test_get_logger_preserves_context_metadata(records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="migrate-123", tags=["lvm"], source="lvm")
    log.info("Context test")

    record = records[0]
    assert record["extra"]["job_id"] == "migrate-123"
    assert record["extra"]["tags"] == ["lvm"]
    assert record["extra"]["source"] == "lvm"


def test_command_output_hidden_between_trace_and_warning():
    """Test raw command output only reaches the console at TRACE or WARNING+."""
    record = {
        "message": "stdout: ...",
        "extra": {"tags": ["command", "output"]},
        "level": logging_module.logger.level("DEBUG"),
    }
    assert logging_module._should_log_command_output(record) is False

    record["level"] = logging_module.logger.level("TRACE")
    assert logging_module._should_log_command_output(record) is True

    record["level"] = logging_module.logger.level("WARNING")
    assert logging_module._should_log_command_output(record) is True

    record["extra"]["tags"] = ["command"]
    record["level"] = logging_module.logger.level("DEBUG")
    assert logging_module._should_log_command_output(record) is True


def test_operation_context_success(records):
    with logging_module.operation_context("fstab", destination="/dev/sdb") as log:
        log.debug("Writing fstab")

    messages = [record["message"] for record in records]
    assert messages == ["Fstab started", "Writing fstab", "Fstab completed"]
    assert records[-1]["level"].name == "SUCCESS"
    assert records[0]["extra"]["destination"] == "/dev/sdb"
    assert records[0]["extra"]["job_id"].startswith("fstab-")


def test_operation_context_failure_reraises(records):
    with pytest.raises(RuntimeError, match="boom"):
        with logging_module.operation_context("bootloader"):
            raise RuntimeError("boom")

    failure = records[-1]
    assert failure["message"] == "Bootloader failed"
    assert failure["level"].name == "ERROR"
    assert failure["extra"]["error_type"] == "RuntimeError"


def test_factory_sources():
    assert logging_module.LoggerFactory.for_lvm() is not None
    assert logging_module.new_run_id().startswith("migrate-")
