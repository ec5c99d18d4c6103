"""
结构化日志配置

日志记录会自动带上当前的追踪上下文：
- request_id   : HTTP 请求 ID（X-Request-ID）
- workspace_id : 正在检索或索引的工作区
- job_id       : worker 正在处理的索引任务

上下文通过 ContextVar 保存，由 ContextFilter 注入到每条 LogRecord，
两种格式化器（JSON / 控制台）都只读取 record 上的属性。

使用示例：
    from app.infra.logging import log_context, setup_logging

    setup_logging()
    logger = logging.getLogger(__name__)

    with log_context(workspace_id="ws_001", job_id=job.id):
        logger.info("开始索引")
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

from app.config import get_settings

CONTEXT_FIELDS = ("request_id", "workspace_id", "job_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

# LogRecord 自带的属性，不作为 extra 输出
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName", *CONTEXT_FIELDS}

# 这些第三方 logger 在 INFO 级别过于嘈杂
NOISY_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "openai",
    "sqlalchemy.engine",
    "aiosqlite",
)


def current_context() -> dict[str, str]:
    """当前已设置的追踪上下文（未设置的字段不包含在内）"""
    values = {name: var.get() for name, var in _context_vars.items()}
    return {k: v for k, v in values.items() if v}


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """
    在 with 块内临时绑定追踪上下文，退出时恢复原值

    worker 用它把 job_id / workspace_id 限定在单个任务范围内。
    """
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"未知的日志上下文字段: {sorted(unknown)}")

    tokens = [(_context_vars[name], _context_vars[name].set(value)) for name, value in fields.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextFilter(logging.Filter):
    """把 ContextVar 中的追踪字段写到 LogRecord 上"""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context_vars.items():
            if not hasattr(record, name):
                setattr(record, name, var.get())
        return True


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    JSON 格式日志（生产环境），一行一条，便于 Loki / ELK 采集

        {"timestamp": "...", "level": "INFO", "logger": "app.services.search",
         "message": "检索完成", "workspace_id": "ws_001", "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                payload[name] = value

        if record.levelno <= logging.DEBUG:
            payload["location"] = f"{record.pathname}:{record.lineno}"

        extra = _record_extra(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    开发环境的彩色单行日志

        2026-01-01 00:00:00 INFO     [3f2a9c1b] [ws:acme] [job:7d1e0b44] app.workers.indexing_worker - 索引任务完成
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        parts = [f"{timestamp} {color}{record.levelname:8}{self.RESET}"]

        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        workspace_id = getattr(record, "workspace_id", None)
        if workspace_id:
            parts.append(f"[ws:{workspace_id}]")
        job_id = getattr(record, "job_id", None)
        if job_id:
            parts.append(f"[job:{job_id[:8]}]")

        parts.append(f"{record.name} - {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """
    配置根 logger（HTTP 服务和 worker 进程启动时各调用一次）

    Args:
        level: 日志级别，默认读取 LOG_LEVEL
        json_format: 是否输出 JSON；默认读取 LOG_JSON，未配置时非开发环境使用 JSON
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    if json_format is None:
        json_format = settings.log_json
    if json_format is None:
        json_format = settings.environment not in ("dev", "development", "test")

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class StageTimer:
    """
    分阶段计时

        timer = StageTimer()
        ...                      # 计算查询向量
        timer.mark("embedding")
        ...                      # 父文档筛选
        timer.mark("gating")
        timer.durations()        # {"total_ms": 150.0, "embedding_ms": 50.0, "gating_ms": 100.0}

    每个 mark 记录的是距离上一个 mark（或开始）的耗时。
    """

    def __init__(self):
        self.started = time.perf_counter()
        self._last = self.started
        self.stages: list[tuple[str, float]] = []

    def mark(self, stage: str) -> None:
        now = time.perf_counter()
        self.stages.append((stage, now - self._last))
        self._last = now

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)

    def durations(self) -> dict[str, float]:
        result = {"total_ms": self.elapsed_ms()}
        for stage, seconds in self.stages:
            result[f"{stage}_ms"] = round(seconds * 1000, 2)
        return result
