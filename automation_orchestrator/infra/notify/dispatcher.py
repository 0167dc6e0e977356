"""通知分发器：有界队列 + 独立投递任务，投递失败可观测但不阻塞轮询。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from automation_orchestrator.domain.enums import NotificationKind
from automation_orchestrator.domain.models import Notification
from automation_orchestrator.infra.logging.context import bind_log_context
from automation_orchestrator.infra.notify.hub import NotificationSink

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(
        self,
        connection_id: str,
        kind: NotificationKind,
        message: str,
        *,
        workitem_id: str | None = None,
    ) -> None: ...


@dataclass(slots=True)
class DeliveryStats:
    """投递统计。"""
    delivered: int = 0
    undeliverable: int = 0
    failed: int = 0
    dropped: int = 0


class NotificationDispatcher:
    """单消费者分发器，按入队顺序投递，保持每个连接内的消息次序。"""

    def __init__(self, sink: NotificationSink, *, maxsize: int = 1000) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[Notification | None] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._accepting = False
        self.stats = DeliveryStats()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._accepting = True
        self._task = asyncio.create_task(self._run(), name="notification-dispatcher")

    async def stop(self) -> None:
        """投递完已入队的通知后退出；此后的通知直接丢弃。"""
        self._accepting = False
        if self._task is None:
            return
        await self._queue.put(None)
        await self._task
        self._task = None

    async def notify(
        self,
        connection_id: str,
        kind: NotificationKind,
        message: str,
        *,
        workitem_id: str | None = None,
    ) -> None:
        """入队一条通知；队列满时等待空位，分发器未运行时丢弃并计数。"""
        if not self._accepting:
            self.stats.dropped += 1
            with bind_log_context(connection_id=connection_id, workitem_id=workitem_id):
                logger.warning(
                    "notification dropped, dispatcher is not running",
                    extra={"event": "notify.dropped", "op": kind.value},
                )
            return
        await self._queue.put(
            Notification(connection_id=connection_id, kind=kind, message=message, workitem_id=workitem_id)
        )

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def _deliver(self, item: Notification) -> None:
        with bind_log_context(connection_id=item.connection_id, workitem_id=item.workitem_id):
            try:
                delivered = await self._sink.send(item.connection_id, item.kind.value, item.message)
            except Exception as exc:
                self.stats.failed += 1
                logger.error(
                    "notification delivery failed",
                    extra={
                        "event": "notify.delivery.failed",
                        "op": item.kind.value,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                return
            if delivered:
                self.stats.delivered += 1
            else:
                self.stats.undeliverable += 1
