"""测试桩：对象存储、Design Automation 客户端与通知通道的内存实现。"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from automation_orchestrator.domain.enums import NotificationKind
from automation_orchestrator.infra.db.models import Base
from automation_orchestrator.infra.db.repository import WorkItemRepository
from automation_orchestrator.infra.designautomation.schemas import AppBundleVersion, WorkItemStatusPayload
from automation_orchestrator.infra.storage.stager import ArtifactStager


class FakeS3:
    """记录调用的 S3 客户端桩。"""

    def __init__(
        self,
        *,
        create_error: Exception | None = None,
        put_error: Exception | None = None,
        presign_error: Exception | None = None,
    ) -> None:
        self.create_error = create_error
        self.put_error = put_error
        self.presign_error = presign_error
        self.buckets: list[str] = []
        self.objects: dict[tuple[str, str], bytes] = {}
        self.presigned: list[tuple[str, str, int]] = []

    def create_bucket(self, **kwargs: Any) -> None:
        if self.create_error is not None:
            raise self.create_error
        self.buckets.append(kwargs["Bucket"])

    def put_object(self, *, Bucket: str, Key: str, Body: bytes) -> None:
        if self.put_error is not None:
            raise self.put_error
        self.objects[(Bucket, Key)] = Body

    def generate_presigned_url(self, method: str, Params: dict[str, str], ExpiresIn: int) -> str:
        if self.presign_error is not None:
            raise self.presign_error
        self.presigned.append((method, Params["Key"], ExpiresIn))
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?op={method}&ttl={ExpiresIn}"


class FakeDesignAutomation:
    """Design Automation 客户端桩；calls 按调用顺序记录方法名与关键参数。"""

    def __init__(
        self,
        *,
        nickname: str = "owner",
        alias: str = "dev",
        appbundles: list[str] | None = None,
        activities: list[str] | None = None,
        next_version: int = 2,
        upload_error: Exception | None = None,
        workitem_error: Exception | None = None,
        statuses: list[dict[str, Any] | Exception] | None = None,
        report_text: str = "report body",
        timeline: list[str] | None = None,
    ) -> None:
        self.nickname = nickname
        self.alias = alias
        self.appbundles = list(appbundles or [])
        self.activities = list(activities or [])
        self.next_version = next_version
        self.upload_error = upload_error
        self.workitem_error = workitem_error
        self.statuses = list(statuses or [])
        self.report_text = report_text
        self.timeline = timeline if timeline is not None else []
        self.calls: list[tuple[Any, ...]] = []
        self.activity_specs: list[dict[str, Any]] = []
        self.workitem_arguments: list[dict[str, Any]] = []

    @staticmethod
    def _version(version: int) -> AppBundleVersion:
        return AppBundleVersion.model_validate(
            {
                "version": version,
                "uploadParameters": {"endpointURL": "https://upload.test/bucket", "formData": {"key": "pkg"}},
            }
        )

    async def list_engines(self) -> list[str]:
        self.calls.append(("list_engines",))
        return ["Autodesk.Revit+2024", "Autodesk.AutoCAD+24_1"]

    async def list_appbundles(self) -> list[str]:
        await asyncio.sleep(0)
        self.calls.append(("list_appbundles",))
        return list(self.appbundles)

    async def create_appbundle(self, name: str, engine: str, description: str) -> AppBundleVersion:
        await asyncio.sleep(0)
        self.calls.append(("create_appbundle", name))
        return self._version(1)

    async def create_appbundle_version(self, name: str, engine: str, description: str) -> AppBundleVersion:
        await asyncio.sleep(0)
        self.calls.append(("create_appbundle_version", name))
        version = self.next_version
        self.next_version += 1
        return self._version(version)

    async def create_appbundle_alias(self, name: str, alias: str, version: int) -> None:
        await asyncio.sleep(0)
        self.calls.append(("create_appbundle_alias", name, alias, version))
        self.appbundles.append(f"{self.nickname}.{name}+{alias}")

    async def modify_appbundle_alias(self, name: str, alias: str, version: int) -> None:
        await asyncio.sleep(0)
        self.calls.append(("modify_appbundle_alias", name, alias, version))

    async def upload_package(self, upload: Any, package_path: Path) -> None:
        await asyncio.sleep(0)
        self.calls.append(("upload_package", package_path.name))
        if self.upload_error is not None:
            raise self.upload_error

    async def list_activities(self) -> list[str]:
        self.calls.append(("list_activities",))
        return list(self.activities)

    async def create_activity(self, spec: dict[str, Any]) -> None:
        self.calls.append(("create_activity", spec["id"]))
        self.activity_specs.append(spec)

    async def create_activity_alias(self, name: str, alias: str, version: int) -> None:
        self.calls.append(("create_activity_alias", name, alias, version))

    async def create_workitem(self, activity_id: str, arguments: dict[str, Any]) -> WorkItemStatusPayload:
        self.calls.append(("create_workitem", activity_id))
        self.workitem_arguments.append(arguments)
        if self.workitem_error is not None:
            raise self.workitem_error
        return WorkItemStatusPayload.from_raw({"id": "wi-1", "status": "pending"})

    async def get_workitem(self, workitem_id: str) -> WorkItemStatusPayload:
        self.calls.append(("get_workitem", workitem_id))
        self.timeline.append("poll")
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        return WorkItemStatusPayload.from_raw(item)

    async def fetch_report(self, report_url: str) -> str:
        self.calls.append(("fetch_report", report_url))
        return self.report_text


class RecordingNotifier:
    """按顺序记录通知；timeline 与客户端桩共享以校验先转发后轮询。"""

    def __init__(self, timeline: list[str] | None = None) -> None:
        self.sent: list[tuple[str, NotificationKind, str]] = []
        self.timeline = timeline if timeline is not None else []

    async def notify(
        self,
        connection_id: str,
        kind: NotificationKind,
        message: str,
        *,
        workitem_id: str | None = None,
    ) -> None:
        self.sent.append((connection_id, kind, message))
        self.timeline.append(f"notify:{kind.value}")

    def kinds(self) -> list[NotificationKind]:
        return [kind for _connection_id, kind, _message in self.sent]


def make_stager(s3: FakeS3, salt_source: Any = None) -> ArtifactStager:
    kwargs: dict[str, Any] = {}
    if salt_source is not None:
        kwargs["salt_source"] = salt_source
    return ArtifactStager(
        s3,
        bucket="owner-designautomation",
        region="us-east-1",
        descriptor_ttl_seconds=3600,
        download_ttl_seconds=900,
        **kwargs,
    )


@pytest.fixture
def repository(tmp_path: Path) -> WorkItemRepository:
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}", future=True)
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)
    Base.metadata.create_all(bind=engine)
    return WorkItemRepository(session_factory)
