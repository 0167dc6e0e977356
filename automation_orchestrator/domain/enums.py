"""领域枚举定义：统一工作项状态、通知类型、访问动词与引擎种类取值。"""

from __future__ import annotations

from enum import Enum


class WorkItemStatus(str, Enum):
    """工作项生命周期状态枚举。"""
    pending = "pending"
    inprogress = "inprogress"
    success = "success"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def from_remote(cls, raw: str) -> "WorkItemStatus":
        """将远端状态映射为生命周期状态；failedXxx 统一折叠为 failed。"""
        text = (raw or "").strip().lower()
        if text.startswith("failed"):
            return cls.failed
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError(f"unknown workitem status: {raw!r}") from exc


TERMINAL_STATUSES = frozenset({WorkItemStatus.success, WorkItemStatus.failed, WorkItemStatus.cancelled})


class NotificationKind(str, Enum):
    """推送给客户端连接的通知类型，取值即事件名。"""
    status = "onComplete"
    download = "downloadResult"


class Verb(str, Enum):
    """访问描述符允许的 HTTP 动词。"""
    get = "get"
    put = "put"
    post = "post"


class ArgumentDirection(str, Enum):
    """活动参数方向。"""
    input = "input"
    output = "output"


class EngineKind(str, Enum):
    """支持的引擎种类，取值为引擎标识中的产品段。"""
    max = "3dsMax"
    autocad = "AutoCAD"
    inventor = "Inventor"
    revit = "Revit"


class DeliveryMode(str, Enum):
    """终态通知的获取方式。"""
    polling = "polling"
    callback = "callback"
