"""工作项轮询：固定间隔查询状态直到终态，每次观测都先转发再进行下一次轮询。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from automation_orchestrator.application.relay import CompletionRelay
from automation_orchestrator.domain.enums import WorkItemStatus
from automation_orchestrator.domain.errors import MonitorCancelledError, PollingError, PollingTimeoutError
from automation_orchestrator.domain.models import ConnectionSubscription, ObjectHandle, WorkItem
from automation_orchestrator.infra.designautomation.client import REMOTE_ERRORS, DesignAutomationClient
from automation_orchestrator.infra.designautomation.schemas import WorkItemStatusPayload
from automation_orchestrator.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


class WorkItemMonitor:
    """单个工作项的轮询状态机。

    退出条件只有三种：观测到终态、超过最长轮询时长、取消令牌被置位；
    任何异常都会作为最后一条消息转发给订阅连接，不做重试。
    """

    def __init__(
        self,
        *,
        workitem: WorkItem,
        subscription: ConnectionSubscription,
        output: ObjectHandle,
        client: DesignAutomationClient,
        relay: CompletionRelay,
        poll_interval_seconds: float = 2.0,
        max_duration_seconds: float = 3600,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._workitem = workitem
        self._subscription = subscription
        self._output = output
        self._client = client
        self._relay = relay
        self._poll_interval = poll_interval_seconds
        self._max_duration = max_duration_seconds
        self._cancel = cancel_event or asyncio.Event()
        self._clock = clock
        self.observed: list[WorkItemStatus] = []

    @property
    def workitem_id(self) -> str:
        return self._workitem.id

    def cancel(self) -> None:
        self._cancel.set()

    async def run(self) -> WorkItemStatus | None:
        """运行到结束；返回最终状态，异常退出时返回 None。"""
        with bind_log_context(workitem_id=self._workitem.id, connection_id=self._subscription.connection_id):
            try:
                final = await self._poll_until_terminal()
                await self._relay.complete(self._subscription, final, self._output)
            except Exception as exc:
                logger.warning(
                    "workitem monitoring stopped",
                    extra={
                        "event": "workitem.monitor.aborted",
                        "op": "monitor",
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                await self._relay.relay_error(self._subscription, exc)
                return None
            return final.lifecycle

    async def _poll_until_terminal(self) -> WorkItemStatusPayload:
        deadline = self._clock() + self._max_duration
        while True:
            await self._wait_interval()
            if self._clock() > deadline:
                raise PollingTimeoutError(
                    f"workitem {self._workitem.id} not finished after {self._max_duration:g}s"
                )
            payload = await self._poll_once()
            await self._relay.relay_status(self._subscription, payload)
            self.observed.append(payload.lifecycle)
            if payload.lifecycle.is_terminal:
                return payload

    async def _poll_once(self) -> WorkItemStatusPayload:
        try:
            payload = await self._client.get_workitem(self._workitem.id)
        except REMOTE_ERRORS as exc:
            raise PollingError(f"cannot query workitem {self._workitem.id}: {exc}") from exc
        self._workitem.status = payload.lifecycle
        self._workitem.raw_status = payload.status
        self._workitem.report_url = payload.report_url
        return payload

    async def _wait_interval(self) -> None:
        # 等待期间不持有任何锁，只等取消令牌或超时。
        if self._cancel.is_set():
            raise MonitorCancelledError("monitoring cancelled")
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            return
        raise MonitorCancelledError("monitoring cancelled")


class MonitorSupervisor:
    """为每个工作项启动独立的轮询任务；进程重启后进行中的轮询会丢失。"""

    def __init__(
        self,
        *,
        client: DesignAutomationClient,
        relay: CompletionRelay,
        poll_interval_seconds: float,
        max_duration_seconds: float,
    ) -> None:
        self._client = client
        self._relay = relay
        self._poll_interval = poll_interval_seconds
        self._max_duration = max_duration_seconds
        self._monitors: dict[str, tuple[WorkItemMonitor, asyncio.Task[WorkItemStatus | None]]] = {}

    def active(self) -> list[str]:
        return sorted(self._monitors)

    def spawn(
        self,
        workitem: WorkItem,
        subscription: ConnectionSubscription,
        output: ObjectHandle,
    ) -> asyncio.Task[WorkItemStatus | None]:
        monitor = WorkItemMonitor(
            workitem=workitem,
            subscription=subscription,
            output=output,
            client=self._client,
            relay=self._relay,
            poll_interval_seconds=self._poll_interval,
            max_duration_seconds=self._max_duration,
        )
        task = asyncio.create_task(monitor.run(), name=f"monitor-{workitem.id}")
        self._monitors[workitem.id] = (monitor, task)
        task.add_done_callback(lambda _task, key=workitem.id: self._monitors.pop(key, None))
        logger.info(
            "workitem monitor started",
            extra={"event": "workitem.monitor.started", "workitem_id": workitem.id},
        )
        return task

    def cancel(self, workitem_id: str) -> bool:
        entry = self._monitors.get(workitem_id)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    async def shutdown(self) -> None:
        """置位所有取消令牌并等待轮询任务结束。"""
        entries = list(self._monitors.values())
        for monitor, _task in entries:
            monitor.cancel()
        if entries:
            await asyncio.gather(*(task for _monitor, task in entries), return_exceptions=True)
