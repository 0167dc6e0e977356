"""依赖容器模块，负责单例化创建仓储、客户端与应用服务对象。"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from automation_orchestrator.application.callback import CallbackReceiver
from automation_orchestrator.application.monitor import MonitorSupervisor
from automation_orchestrator.application.orchestrator import AutomationService
from automation_orchestrator.application.registry import BundleRegistry
from automation_orchestrator.application.relay import CompletionRelay
from automation_orchestrator.application.submitter import JobSubmitter
from automation_orchestrator.config import get_settings
from automation_orchestrator.infra.db.repository import WorkItemRepository
from automation_orchestrator.infra.db.session import create_db_engine, create_session_factory
from automation_orchestrator.infra.designautomation.auth import ApsCredentials, ApsTokenProvider
from automation_orchestrator.infra.designautomation.client import DesignAutomationClient
from automation_orchestrator.infra.notify.dispatcher import NotificationDispatcher
from automation_orchestrator.infra.notify.hub import ConnectionHub
from automation_orchestrator.infra.storage.stager import ArtifactStager
from automation_orchestrator.infra.storage.workspace import WorkspaceManager


@lru_cache(maxsize=1)
def get_db_engine() -> Engine:
    return create_db_engine(get_settings().database_url)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory(get_db_engine())


@lru_cache(maxsize=1)
def get_repository() -> WorkItemRepository:
    """获取工作项仓储单例。"""
    return WorkItemRepository(get_session_factory())


@lru_cache(maxsize=1)
def get_workspace_manager() -> WorkspaceManager:
    settings = get_settings()
    return WorkspaceManager(settings.data_root, settings.bundles_dir, settings.max_upload_file_size_bytes)


@lru_cache(maxsize=1)
def get_token_provider() -> ApsTokenProvider:
    """获取 APS 令牌提供者单例。"""
    settings = get_settings()
    return ApsTokenProvider(
        base_url=settings.aps_base_url,
        credentials=ApsCredentials(
            client_id=settings.aps_client_id,
            client_secret=settings.aps_client_secret,
            scopes=settings.aps_scopes_list(),
        ),
        timeout_seconds=settings.request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_da_client() -> DesignAutomationClient:
    """获取 Design Automation 客户端单例。"""
    settings = get_settings()
    return DesignAutomationClient(
        base_url=settings.da_base_url,
        token_provider=get_token_provider(),
        timeout_seconds=settings.request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_s3_client() -> Any:
    settings = get_settings()
    kwargs: dict[str, Any] = {"region_name": settings.storage_region}
    if settings.storage_endpoint_url:
        kwargs["endpoint_url"] = settings.storage_endpoint_url
    return boto3.client("s3", **kwargs)


@lru_cache(maxsize=1)
def get_stager() -> ArtifactStager:
    """获取产物暂存器单例。"""
    settings = get_settings()
    return ArtifactStager(
        get_s3_client(),
        bucket=settings.bucket_name,
        region=settings.storage_region,
        descriptor_ttl_seconds=settings.access_descriptor_ttl_seconds,
        download_ttl_seconds=settings.download_url_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_connection_hub() -> ConnectionHub:
    return ConnectionHub()


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    """获取通知分发器单例，队列容量来自配置。"""
    return NotificationDispatcher(get_connection_hub(), maxsize=get_settings().notification_queue_size)


@lru_cache(maxsize=1)
def get_relay() -> CompletionRelay:
    return CompletionRelay(
        client=get_da_client(),
        stager=get_stager(),
        notifier=get_dispatcher(),
        repository=get_repository(),
    )


@lru_cache(maxsize=1)
def get_registry() -> BundleRegistry:
    settings = get_settings()
    return BundleRegistry(get_da_client(), nickname=settings.nickname, alias=settings.da_alias)


@lru_cache(maxsize=1)
def get_supervisor() -> MonitorSupervisor:
    settings = get_settings()
    return MonitorSupervisor(
        client=get_da_client(),
        relay=get_relay(),
        poll_interval_seconds=settings.poll_interval_seconds,
        max_duration_seconds=settings.poll_max_duration_seconds,
    )


@lru_cache(maxsize=1)
def get_callback_receiver() -> CallbackReceiver:
    return CallbackReceiver(relay=get_relay(), bucket=get_settings().bucket_name)


@lru_cache(maxsize=1)
def get_automation_service() -> AutomationService:
    """获取编排服务单例。"""
    settings = get_settings()
    workspace_manager = get_workspace_manager()
    return AutomationService(
        settings=settings,
        client=get_da_client(),
        registry=get_registry(),
        stager=get_stager(),
        submitter=JobSubmitter(get_da_client(), discard=workspace_manager.discard),
        supervisor=get_supervisor(),
        workspace_manager=workspace_manager,
        repository=get_repository(),
    )


async def shutdown_container_resources() -> None:
    """停止轮询与分发任务，关闭共享客户端并清理依赖容器缓存。"""
    if get_supervisor.cache_info().currsize:
        await get_supervisor().shutdown()
    if get_dispatcher.cache_info().currsize:
        await get_dispatcher().stop()
    if get_da_client.cache_info().currsize:
        await get_da_client().aclose()
    if get_token_provider.cache_info().currsize:
        await get_token_provider().aclose()
    if get_db_engine.cache_info().currsize:
        get_db_engine().dispose()

    # 按依赖顺序清理缓存，确保后续请求可重新构建全新实例。
    for provider in (
        get_automation_service,
        get_callback_receiver,
        get_supervisor,
        get_registry,
        get_relay,
        get_dispatcher,
        get_connection_hub,
        get_stager,
        get_s3_client,
        get_da_client,
        get_token_provider,
        get_workspace_manager,
        get_repository,
        get_session_factory,
        get_db_engine,
    ):
        provider.cache_clear()
