"""领域数据结构定义：对象句柄、访问描述符、产物、工作项与订阅关系等值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from automation_orchestrator.domain.enums import ArgumentDirection, NotificationKind, Verb, WorkItemStatus


def qualify(nickname: str, name: str, alias: str) -> str:
    """构造 `owner.name+alias` 形式的限定 ID。"""
    return f"{nickname}.{name}+{alias}"


@dataclass(frozen=True, slots=True)
class ObjectHandle:
    """对象存储中的持久对象定位信息。"""
    bucket: str
    key: str
    size_bytes: int | None = None


@dataclass(frozen=True, slots=True)
class AccessDescriptor:
    """有时效、按动词限定的对象访问描述，供远端引擎直接读写。"""
    url: str
    verb: Verb
    headers: dict[str, str] = field(default_factory=dict)
    local_name: str | None = None

    def to_argument(self) -> dict[str, Any]:
        """转换为工作项参数结构。"""
        argument: dict[str, Any] = {"url": self.url, "verb": self.verb.value}
        if self.headers:
            argument["headers"] = dict(self.headers)
        if self.local_name:
            argument["localName"] = self.local_name
        return argument


@dataclass(slots=True)
class Artifact:
    """工作项引用的输入/输出文件；local_path 在描述符生成后即被清理。"""
    name: str
    handle: ObjectHandle
    descriptor: AccessDescriptor
    local_path: Path | None = None


@dataclass(frozen=True, slots=True)
class ActivityParameter:
    """活动参数契约中的单个参数定义。"""
    direction: ArgumentDirection
    verb: Verb
    required: bool = True
    local_name: str | None = None
    description: str = ""

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "verb": self.verb.value,
            "required": self.required,
            "description": self.description,
            "ondemand": False,
            "zip": False,
        }
        if self.local_name:
            payload["localName"] = self.local_name
        return payload


@dataclass(frozen=True, slots=True)
class BundleProvisioning:
    """ensure_bundle 的结果：当前别名指向的版本。"""
    qualified_id: str
    name: str
    engine: str
    alias: str
    version: int
    created: bool


@dataclass(frozen=True, slots=True)
class ActivityProvisioning:
    """ensure_activity 的结果；created=False 表示已存在未做变更。"""
    qualified_id: str
    created: bool


@dataclass(slots=True)
class WorkItem:
    """一次已提交、可追踪的活动执行。"""
    id: str
    activity_id: str
    status: WorkItemStatus
    raw_status: str
    report_url: str | None = None
    artifacts: dict[str, Artifact] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True, slots=True)
class ConnectionSubscription:
    """工作项与通知连接的一对一内存关联，不做持久化。"""
    connection_id: str
    workitem_id: str


@dataclass(frozen=True, slots=True)
class Notification:
    """待投递给指定连接的一条命名事件。"""
    connection_id: str
    kind: NotificationKind
    message: str
    workitem_id: str | None = None
