"""Unit tests for logging setup and per-task log context."""

import asyncio
import json
import logging
import os
import sys

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.logging_utils import (
    ContextFilter,
    LogContext,
    StructuredFormatter,
    TextFormatter,
    get_logger,
)


def make_record(message="Sending outreach", **extra) -> logging.LogRecord:
    record = logging.makeLogRecord(
        {"name": "outreach_engine.test", "levelname": "INFO", "levelno": logging.INFO, "msg": message}
    )
    for key, value in extra.items():
        setattr(record, key, value)
    ContextFilter().filter(record)
    return record


class TestLogContext:
    """Tests for LogContext."""

    @pytest.mark.unit
    def test_nested_blocks_merge_and_restore(self):
        with LogContext(lead="a"):
            with LogContext(step="render"):
                assert LogContext.current() == {"lead": "a", "step": "render"}
            assert LogContext.current() == {"lead": "a"}
        assert LogContext.current() == {}

    @pytest.mark.unit
    def test_restored_when_block_raises(self):
        with pytest.raises(RuntimeError):
            with LogContext(lead="a"):
                raise RuntimeError("boom")
        assert LogContext.current() == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_fields(self):
        """Test that interleaved tasks never see each other's lead."""
        seen = {}

        async def process(key):
            with LogContext(dedup_key=key):
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                seen[key] = LogContext.current()["dedup_key"]

        await asyncio.gather(process("lead-1"), process("lead-2"), process("lead-3"))

        assert seen == {"lead-1": "lead-1", "lead-2": "lead-2", "lead-3": "lead-3"}


class TestFormatters:
    """Tests for the JSON and text formatters."""

    @pytest.mark.unit
    def test_structured_includes_context_and_extra(self):
        with LogContext(dedup_key="google:p1|austin|tx"):
            record = make_record(phase=2)

        entry = json.loads(StructuredFormatter(service_name="svc").format(record))

        assert entry["message"] == "Sending outreach"
        assert entry["service"] == "svc"
        assert entry["context"] == {"dedup_key": "google:p1|austin|tx"}
        assert entry["extra"] == {"phase": 2}

    @pytest.mark.unit
    def test_structured_without_context(self):
        entry = json.loads(StructuredFormatter().format(make_record()))

        assert "context" not in entry
        assert "extra" not in entry

    @pytest.mark.unit
    def test_text_appends_fields(self):
        with LogContext(dedup_key="k1"):
            line = TextFormatter().format(make_record())

        assert line.endswith("outreach_engine.test: Sending outreach [dedup_key=k1]")

    @pytest.mark.unit
    def test_text_without_fields(self):
        line = TextFormatter().format(make_record())
        assert line.endswith("INFO     outreach_engine.test: Sending outreach")


class TestGetLogger:
    """Tests for get_logger."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("outreach_engine.engine", "outreach_engine.engine"),
            ("worker", "outreach_engine.worker"),
        ],
    )
    def test_namespaced(self, name, expected):
        assert get_logger(name).name == expected
