"""日志初始化：JSON 行格式、队列异步落盘、凭据与预签名地址脱敏。"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from automation_orchestrator.config import Settings
from automation_orchestrator.infra.logging.context import CONTEXT_KEYS, get_log_context

_listener: QueueListener | None = None

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "botocore", "boto3", "urllib3", "sqlalchemy.engine")

# 令牌、客户端密钥，以及预签名 URL 中等同临时凭据的签名参数。
_CREDENTIAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]{8,}"), r"\1***"),
    (re.compile(r"(?i)(client_secret\"?\s*[:=]\s*\"?)[^\s,;&\"]+"), r"\1***"),
    (re.compile(r"(?i)(access_token\"?\s*[:=]\s*\"?)[^\s,;&\"]+"), r"\1***"),
    (re.compile(r"(?i)((?:X-Amz-Signature|X-Amz-Credential|X-Amz-Security-Token|Signature)=)[^&\s\"]+"), r"\1***"),
)
# strict 模式下整段去掉 URL 查询串，只保留对象地址。
_URL_QUERY = re.compile(r"(https?://[^\s?\"]+)\?[^\s\"]*")


def redact_text(value: str | None, mode: str) -> str | None:
    """按 off/standard/strict 模式脱敏。"""
    if value is None:
        return None
    text = str(value)
    mode = mode.lower()
    if mode == "off":
        return text
    if mode == "strict":
        text = _URL_QUERY.sub(r"\1?***", text)
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    """把远端响应或请求摘要序列化为截断后的单行文本。"""
    if payload is None:
        return None
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    text = redact_text(text, redaction_mode) or ""
    if len(text) > max_chars:
        return f"{text[:max_chars]}...(truncated)"
    return text


class DebugRoutingFilter(logging.Filter):
    """低于全局级别的记录默认丢弃；指定模块或工作项的 DEBUG 放行。"""

    def __init__(self, *, min_level: int, debug_modules: set[str], debug_workitem_ids: set[str]) -> None:
        super().__init__()
        self._min_level = min_level
        self._debug_prefixes = tuple(f"{name}." for name in debug_modules)
        self._debug_modules = debug_modules
        self._debug_workitem_ids = debug_workitem_ids

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if record.name in self._debug_modules or record.name.startswith(self._debug_prefixes):
            return True
        workitem_id = getattr(record, "workitem_id", None) or get_log_context().get("workitem_id")
        return workitem_id in self._debug_workitem_ids


class ContextInjectionFilter(logging.Filter):
    """入队前把 contextvars 固化到 record 上，监听线程里读不到调用方上下文。"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_log_context()
        for key in CONTEXT_KEYS:
            if getattr(record, key, None) is None:
                setattr(record, key, ctx.get(key))
        return True


class StructuredJsonFormatter(logging.Formatter):
    """每条记录输出一行 JSON；远端调用字段缺省为 null。"""

    _EXTRA_FIELDS = ("external_service", "op", "duration_ms", "status_code", "error_type")

    def __init__(
        self,
        *,
        service: str,
        process_role: str,
        redaction_mode: str,
        payload_preview_chars: int,
    ) -> None:
        super().__init__()
        self._static = {"service": service, "process_role": process_role}
        self._redaction_mode = redaction_mode
        self._payload_preview_chars = payload_preview_chars

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)

        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            **self._static,
            "module": record.name,
            "event": getattr(record, "event", None),
        }
        entry.update({key: getattr(record, key, None) or ctx.get(key) for key in CONTEXT_KEYS})
        entry.update({key: getattr(record, key, None) for key in self._EXTRA_FIELDS})
        entry["message"] = redact_text(record.getMessage(), self._redaction_mode)
        entry["error"] = redact_text(str(error), self._redaction_mode) if error is not None else None
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._payload_preview_chars,
            redaction_mode=self._redaction_mode,
        )
        return json.dumps(entry, ensure_ascii=False, default=str)


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """根 logger 只挂一个 QueueHandler；落盘与 stderr 输出在监听线程完成。"""
    global _listener
    shutdown_logging()

    log_dir = settings.log_dir.resolve() / process_role
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "orchestrator.jsonl"

    formatter = StructuredJsonFormatter(
        service="design-automation-orchestrator",
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    queue_handler = QueueHandler(records)
    queue_handler.addFilter(ContextInjectionFilter())
    queue_handler.addFilter(
        DebugRoutingFilter(
            min_level=_parse_level(settings.log_level),
            debug_modules=set(settings.log_debug_modules_list()),
            debug_workitem_ids=set(settings.log_debug_workitem_ids_list()),
        )
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(queue_handler)
    root.setLevel(logging.DEBUG)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _listener = QueueListener(records, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    """刷完队列并关闭文件句柄。"""
    global _listener
    if _listener is None:
        return
    listener, _listener = _listener, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()
