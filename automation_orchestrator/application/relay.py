"""完成通知转发：轮询与回调两条路径共用的状态、报告与下载地址转发步骤。"""

from __future__ import annotations

import asyncio
import json
import logging

from automation_orchestrator.domain.enums import NotificationKind, WorkItemStatus
from automation_orchestrator.domain.models import ConnectionSubscription, ObjectHandle
from automation_orchestrator.infra.db.repository import WorkItemRepository
from automation_orchestrator.infra.designautomation.client import DesignAutomationClient
from automation_orchestrator.infra.designautomation.schemas import WorkItemStatusPayload
from automation_orchestrator.infra.notify.dispatcher import Notifier
from automation_orchestrator.infra.storage.stager import ArtifactStager

logger = logging.getLogger(__name__)


class CompletionRelay:
    """把工作项观测结果转换为两类通知：状态/报告文本 与 下载地址。"""

    def __init__(
        self,
        *,
        client: DesignAutomationClient,
        stager: ArtifactStager,
        notifier: Notifier,
        repository: WorkItemRepository | None = None,
    ) -> None:
        self._client = client
        self._stager = stager
        self._notifier = notifier
        self._repository = repository

    async def relay_status(self, subscription: ConnectionSubscription, payload: WorkItemStatusPayload) -> None:
        """原样转发一次状态观测，并写入台账。"""
        await self._notifier.notify(
            subscription.connection_id,
            NotificationKind.status,
            json.dumps(payload.raw, ensure_ascii=False),
            workitem_id=subscription.workitem_id,
        )
        if self._repository is not None:
            await asyncio.to_thread(
                self._repository.record_status,
                subscription.workitem_id,
                payload.lifecycle,
                raw_status=payload.status,
                report_url=payload.report_url,
                payload=payload.raw,
            )

    async def relay_report(self, subscription: ConnectionSubscription, report_url: str) -> None:
        report = await self._client.fetch_report(report_url)
        await self._notifier.notify(
            subscription.connection_id,
            NotificationKind.status,
            report,
            workitem_id=subscription.workitem_id,
        )
        if self._repository is not None:
            await asyncio.to_thread(
                self._repository.add_event,
                subscription.workitem_id,
                event_type="workitem.report.relayed",
                payload={"report_url": report_url, "size": len(report)},
            )

    async def relay_download(self, subscription: ConnectionSubscription, output: ObjectHandle) -> None:
        url = await self._stager.resolve_download_url(output)
        await self._notifier.notify(
            subscription.connection_id,
            NotificationKind.download,
            url,
            workitem_id=subscription.workitem_id,
        )
        if self._repository is not None:
            await asyncio.to_thread(
                self._repository.add_event,
                subscription.workitem_id,
                event_type="workitem.download.relayed",
                payload={"object_key": output.key},
            )

    async def complete(
        self,
        subscription: ConnectionSubscription,
        payload: WorkItemStatusPayload,
        output: ObjectHandle,
    ) -> None:
        """终态收尾：有报告就转发报告，仅成功时再转发下载地址。"""
        if payload.report_url:
            await self.relay_report(subscription, payload.report_url)
        if payload.lifecycle is WorkItemStatus.success:
            await self.relay_download(subscription, output)
        logger.info(
            "workitem completion relayed",
            extra={
                "event": "workitem.completed",
                "workitem_id": subscription.workitem_id,
                "payload_preview": {"status": payload.status, "has_report": bool(payload.report_url)},
            },
        )

    async def relay_error(self, subscription: ConnectionSubscription, exc: BaseException) -> None:
        """把终止该通知流的错误作为最后一条状态消息转发，本身不再抛出。"""
        message = f"{type(exc).__name__}: {exc}"
        try:
            await self._notifier.notify(
                subscription.connection_id,
                NotificationKind.status,
                message,
                workitem_id=subscription.workitem_id,
            )
            if self._repository is not None:
                await asyncio.to_thread(self._repository.set_error, subscription.workitem_id, message)
        except Exception as relay_exc:
            logger.error(
                "error notification could not be relayed",
                extra={
                    "event": "workitem.error.relay_failed",
                    "workitem_id": subscription.workitem_id,
                    "error_type": type(relay_exc).__name__,
                    "error": str(relay_exc),
                },
            )
