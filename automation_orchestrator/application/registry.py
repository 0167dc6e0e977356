"""Bundle/Activity 注册：幂等地确保版本化 bundle 与活动存在，并维护稳定别名。"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any

import httpx

from automation_orchestrator.domain.engines import EngineTemplate, referenced_arguments, resolve_engine
from automation_orchestrator.domain.enums import ArgumentDirection, Verb
from automation_orchestrator.domain.errors import ProvisioningError
from automation_orchestrator.domain.models import (
    ActivityParameter,
    ActivityProvisioning,
    BundleProvisioning,
    qualify,
)
from automation_orchestrator.infra.designautomation.client import REMOTE_ERRORS, DesignAutomationClient
from automation_orchestrator.infra.designautomation.schemas import AppBundleVersion

logger = logging.getLogger(__name__)

OUTPUT_LOCAL_NAME = "outputFile.txt"

ACTIVITY_PARAMETERS: dict[str, ActivityParameter] = {
    "inputFile": ActivityParameter(
        direction=ArgumentDirection.input,
        verb=Verb.get,
        required=True,
        local_name="$(inputFile)",
        description="input file",
    ),
    "outputFile": ActivityParameter(
        direction=ArgumentDirection.output,
        verb=Verb.put,
        required=True,
        local_name=OUTPUT_LOCAL_NAME,
        description="output file",
    ),
}


class BundleRegistry:
    """按 (name, engine) 串行化的 bundle/活动注册器。

    bundle 的顺序固定为 建版本 → 改别名 → 上传包；上传失败时遗留的孤立版本
    需要人工清理，不在此处重试。
    """

    def __init__(self, client: DesignAutomationClient, *, nickname: str, alias: str) -> None:
        self._client = client
        self._nickname = nickname
        self._alias = alias
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def qualified_id(self, name: str) -> str:
        return qualify(self._nickname, name, self._alias)

    async def ensure_bundle(self, name: str, engine: str, package_path: Path) -> BundleProvisioning:
        if not package_path.is_file():
            raise ProvisioningError(f"appbundle package not found at {package_path}")

        async with self._locks[(name, engine)]:
            qualified_id = self.qualified_id(name)
            try:
                existing = await self._client.list_appbundles()
            except REMOTE_ERRORS as exc:
                raise ProvisioningError(f"cannot list appbundles: {exc}") from exc

            created = qualified_id not in existing
            if created:
                version = await self._create_first_version(name, engine)
            else:
                version = await self._create_next_version(name, engine)

            try:
                await self._client.upload_package(version.upload_parameters, package_path)
            except (httpx.HTTPError, OSError) as exc:
                raise ProvisioningError(
                    f"package upload failed for {name} version {version.version}; "
                    f"alias {self._alias} now points at an incomplete version: {exc}"
                ) from exc

            logger.info(
                "appbundle provisioned",
                extra={
                    "event": "registry.bundle.provisioned",
                    "external_service": "design-automation",
                    "op": "appbundles.ensure",
                    "payload_preview": {"id": qualified_id, "version": version.version, "created": created},
                },
            )
            return BundleProvisioning(
                qualified_id=qualified_id,
                name=name,
                engine=engine,
                alias=self._alias,
                version=version.version,
                created=created,
            )

    async def _create_first_version(self, name: str, engine: str) -> AppBundleVersion:
        try:
            version = await self._client.create_appbundle(name, engine, f"Description for {name}")
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(f"cannot create new app {name}: {exc}") from exc
        try:
            await self._client.create_appbundle_alias(name, self._alias, version.version)
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(f"cannot create alias {self._alias} for {name}: {exc}") from exc
        return version

    async def _create_next_version(self, name: str, engine: str) -> AppBundleVersion:
        try:
            version = await self._client.create_appbundle_version(name, engine, name)
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(f"cannot create new version of {name}: {exc}") from exc
        try:
            await self._client.modify_appbundle_alias(name, self._alias, version.version)
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(
                f"cannot repoint alias {self._alias} of {name} to version {version.version}: {exc}"
            ) from exc
        return version

    async def ensure_activity(self, name: str, engine: str, bundle_name: str) -> ActivityProvisioning:
        # 先解析引擎，不支持的引擎不会触发任何远端调用。
        template = resolve_engine(engine)
        qualified_id = self.qualified_id(name)

        async with self._locks[(name, engine)]:
            try:
                existing = await self._client.list_activities()
            except REMOTE_ERRORS as exc:
                raise ProvisioningError(f"cannot list activities: {exc}") from exc
            if qualified_id in existing:
                return ActivityProvisioning(qualified_id=qualified_id, created=False)

            spec = self.build_activity_spec(name, engine, bundle_name, template)
            try:
                await self._client.create_activity(spec)
                await self._client.create_activity_alias(name, self._alias, 1)
            except REMOTE_ERRORS as exc:
                raise ProvisioningError(f"cannot create activity {name}: {exc}") from exc

        logger.info(
            "activity provisioned",
            extra={
                "event": "registry.activity.provisioned",
                "external_service": "design-automation",
                "op": "activities.ensure",
                "payload_preview": {"id": qualified_id, "engine": engine},
            },
        )
        return ActivityProvisioning(qualified_id=qualified_id, created=True)

    def build_activity_spec(
        self,
        name: str,
        engine: str,
        bundle_name: str,
        template: EngineTemplate,
    ) -> dict[str, Any]:
        """按引擎模板组装活动定义，并校验命令行引用的参数都在契约中。"""
        command_line = template.render_command_line(bundle_name)
        missing = referenced_arguments(command_line) - set(ACTIVITY_PARAMETERS)
        if missing:
            raise ProvisioningError(f"command line references undeclared arguments: {sorted(missing)}")
        return {
            "id": name,
            "appbundles": [self.qualified_id(bundle_name)],
            "commandLine": [command_line],
            "engine": engine,
            "parameters": {key: value.to_payload() for key, value in ACTIVITY_PARAMETERS.items()},
            "settings": {"script": {"value": template.script}},
            "description": f"{name} for {template.kind.value} (.{template.extension} input)",
        }

    async def list_defined_activities(self) -> list[str]:
        """列出当前 nickname 下定义的活动，去掉 $LATEST 与前缀。"""
        try:
            activities = await self._client.list_activities()
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(f"cannot list activities: {exc}") from exc
        prefix = f"{self._nickname}."
        return [
            activity[len(prefix):]
            for activity in activities
            if activity.startswith(prefix) and "$LATEST" not in activity
        ]
