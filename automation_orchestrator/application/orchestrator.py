"""编排服务门面：处理 bundle/活动准备、工作项提交、引擎与台账查询。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from automation_orchestrator.application.monitor import MonitorSupervisor
from automation_orchestrator.application.registry import OUTPUT_LOCAL_NAME, BundleRegistry
from automation_orchestrator.application.submitter import JobSubmitter
from automation_orchestrator.config import Settings
from automation_orchestrator.domain.enums import DeliveryMode, Verb
from automation_orchestrator.domain.errors import ProvisioningError, StagingError
from automation_orchestrator.domain.models import (
    ActivityProvisioning,
    Artifact,
    BundleProvisioning,
    ConnectionSubscription,
    WorkItem,
)
from automation_orchestrator.infra.db.models import WorkItemORM
from automation_orchestrator.infra.db.repository import WorkItemRepository
from automation_orchestrator.infra.designautomation.client import REMOTE_ERRORS, DesignAutomationClient
from automation_orchestrator.infra.logging.context import bind_log_context
from automation_orchestrator.infra.storage.stager import ArtifactStager
from automation_orchestrator.infra.storage.workspace import WorkspaceManager


@dataclass(slots=True)
class UploadedFileData:
    """上传文件内存表示，保存名称、内容与 MIME 信息。"""
    filename: str
    content: bytes
    content_type: str | None


logger = logging.getLogger(__name__)


def bundle_name_for(zip_file_name: str) -> str:
    return f"{zip_file_name}AppBundle"


def activity_name_for(zip_file_name: str) -> str:
    return f"{zip_file_name}Activity"


class AutomationService:
    """应用编排服务门面，对外提供作业全流程能力。"""
    def __init__(
        self,
        *,
        settings: Settings,
        client: DesignAutomationClient,
        registry: BundleRegistry,
        stager: ArtifactStager,
        submitter: JobSubmitter,
        supervisor: MonitorSupervisor,
        workspace_manager: WorkspaceManager,
        repository: WorkItemRepository,
    ) -> None:
        self._settings = settings
        self._client = client
        self._registry = registry
        self._stager = stager
        self._submitter = submitter
        self._supervisor = supervisor
        self._workspace_manager = workspace_manager
        self._repository = repository

    def list_local_bundles(self) -> list[str]:
        return self._workspace_manager.list_local_bundles()

    async def list_engines(self) -> list[str]:
        """分页拉取全部引擎并排序。"""
        try:
            engines = await self._client.list_engines()
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(f"cannot list engines: {exc}") from exc
        return sorted(engines)

    async def create_app_bundle(self, zip_file_name: str, engine: str) -> BundleProvisioning:
        package_path = self._workspace_manager.bundle_package_path(zip_file_name)
        return await self._registry.ensure_bundle(bundle_name_for(zip_file_name), engine, package_path)

    async def create_activity(self, zip_file_name: str, engine: str) -> ActivityProvisioning:
        return await self._registry.ensure_activity(
            activity_name_for(zip_file_name),
            engine,
            bundle_name_for(zip_file_name),
        )

    async def list_defined_activities(self) -> list[str]:
        return await self._registry.list_defined_activities()

    async def start_workitem(
        self,
        *,
        activity_name: str,
        connection_id: str,
        upload: UploadedFileData,
    ) -> WorkItem:
        """暂存输入、预留输出、提交工作项，并按配置选择轮询或回调。"""
        if not activity_name.strip():
            raise ValueError("activityName is required")
        if not connection_id.strip():
            raise ValueError("browserConnectionId is required")
        activity_id = f"{self._settings.nickname}.{activity_name}"

        with bind_log_context(connection_id=connection_id):
            stored = await asyncio.to_thread(self._workspace_manager.store_upload, upload.filename, upload.content)
            try:
                input_handle = await self._stager.stage(stored.absolute_path, role="input")
            except StagingError:
                self._workspace_manager.discard(stored.absolute_path)
                raise
            output_handle = self._stager.reserve(f"{stored.filename}.txt", role="output")

            try:
                input_descriptor = self._stager.build_access_descriptor(input_handle, Verb.get)
                output_descriptor = self._stager.build_access_descriptor(
                    output_handle, Verb.put, local_name=OUTPUT_LOCAL_NAME
                )
            except StagingError:
                self._workspace_manager.discard(stored.absolute_path)
                raise
            input_artifact = Artifact(
                name="inputFile",
                handle=input_handle,
                descriptor=input_descriptor,
                local_path=stored.absolute_path,
            )
            output_artifact = Artifact(name="outputFile", handle=output_handle, descriptor=output_descriptor)

            mode = DeliveryMode.callback if self._settings.callback_base_url else DeliveryMode.polling
            callback_url = self.callback_url(connection_id, output_handle.key) if mode is DeliveryMode.callback else None
            workitem = await self._submitter.submit(
                activity_id,
                input_artifact,
                output_artifact,
                callback_url=callback_url,
            )

            await asyncio.to_thread(
                self._repository.create_work_item,
                workitem_id=workitem.id,
                activity_id=activity_id,
                connection_id=connection_id,
                delivery_mode=mode,
                status=workitem.status,
                raw_status=workitem.raw_status,
                input_object_key=input_handle.key,
                output_object_key=output_handle.key,
            )
            if mode is DeliveryMode.polling:
                self._supervisor.spawn(
                    workitem,
                    ConnectionSubscription(connection_id=connection_id, workitem_id=workitem.id),
                    output_handle,
                )
            logger.info(
                "workitem started",
                extra={
                    "event": "workitem.started",
                    "workitem_id": workitem.id,
                    "payload_preview": {"activityId": activity_id, "mode": mode.value, "status": workitem.raw_status},
                },
            )
            return workitem

    def callback_url(self, connection_id: str, output_name: str) -> str:
        base = (self._settings.callback_base_url or "").rstrip("/")
        query = urlencode({"id": connection_id, "outputFileName": output_name})
        return f"{base}{self._settings.api_prefix}/aps/callback/designautomation?{query}"

    def cancel_monitoring(self, workitem_id: str) -> bool:
        """停止本进程对该工作项的轮询；不取消远端执行。"""
        return self._supervisor.cancel(workitem_id)

    def get_workitem(self, workitem_id: str) -> WorkItemORM:
        item = self._repository.get_work_item(workitem_id)
        if item is None:
            raise KeyError(f"workitem not found: {workitem_id}")
        return item
