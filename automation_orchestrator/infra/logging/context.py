"""日志上下文：基于 contextvars 透传 request/workitem/connection 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

_request_id_var: ContextVar[str | None] = ContextVar("log_request_id", default=None)
_workitem_id_var: ContextVar[str | None] = ContextVar("log_workitem_id", default=None)
_connection_id_var: ContextVar[str | None] = ContextVar("log_connection_id", default=None)

CONTEXT_KEYS = ("request_id", "workitem_id", "connection_id")


def get_log_context() -> dict[str, str | None]:
    """返回当前协程/线程下的日志上下文字段。"""
    return {
        "request_id": _request_id_var.get(),
        "workitem_id": _workitem_id_var.get(),
        "connection_id": _connection_id_var.get(),
    }


@contextmanager
def bind_log_context(
    *,
    request_id: str | None | object = _UNSET,
    workitem_id: str | None | object = _UNSET,
    connection_id: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。"""
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    if request_id is not _UNSET:
        tokens.append((_request_id_var, _request_id_var.set(request_id)))
    if workitem_id is not _UNSET:
        tokens.append((_workitem_id_var, _workitem_id_var.set(workitem_id)))
    if connection_id is not _UNSET:
        tokens.append((_connection_id_var, _connection_id_var.set(connection_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
