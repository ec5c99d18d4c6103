"""
日志上下文与格式化器测试
"""

import json
import logging

import pytest

from app.infra.logging import (
    ConsoleFormatter,
    ContextFilter,
    JSONFormatter,
    StageTimer,
    current_context,
    log_context,
)


def _record(msg: str = "索引完成", **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.workers.indexing_worker", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    ContextFilter().filter(record)
    return record


class TestLogContext:
    def test_binds_and_restores(self):
        assert current_context() == {}
        with log_context(workspace_id="ws-1", job_id="job-1"):
            assert current_context() == {"workspace_id": "ws-1", "job_id": "job-1"}
            with log_context(job_id="job-2"):
                assert current_context()["job_id"] == "job-2"
            assert current_context()["job_id"] == "job-1"
        assert current_context() == {}

    def test_rejects_unknown_field(self):
        with pytest.raises(ValueError):
            with log_context(tenant="x"):
                pass


class TestFormatters:
    def test_json_includes_context_and_extra(self):
        with log_context(request_id="req-123", workspace_id="ws-1"):
            record = _record(parents=3)

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "索引完成"
        assert payload["request_id"] == "req-123"
        assert payload["workspace_id"] == "ws-1"
        assert "job_id" not in payload
        assert payload["extra"] == {"parents": 3}

    def test_console_shows_short_ids(self):
        with log_context(workspace_id="ws-1", job_id="0123456789abcdef"):
            line = ConsoleFormatter().format(_record())

        assert "[ws:ws-1]" in line
        assert "[job:01234567]" in line
        assert line.endswith("app.workers.indexing_worker - 索引完成")


class TestStageTimer:
    def test_durations(self):
        timer = StageTimer()
        timer.mark("embedding")
        timer.mark("gating")

        durations = timer.durations()

        assert set(durations) == {"total_ms", "embedding_ms", "gating_ms"}
        assert durations["total_ms"] >= durations["embedding_ms"]
