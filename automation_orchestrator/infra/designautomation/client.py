"""Design Automation v3 HTTP 客户端：封装 bundle、活动、引擎与工作项接口。"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

import httpx

from automation_orchestrator.domain.errors import TokenError
from automation_orchestrator.infra.designautomation.auth import TokenProvider
from automation_orchestrator.infra.designautomation.schemas import (
    ActivityResponse,
    AliasResponse,
    AppBundleVersion,
    MalformedResponseError,
    ModelT,
    Page,
    UploadParameters,
    WorkItemStatusPayload,
    parse_model,
)

logger = logging.getLogger(__name__)

# 引擎 API 调用可能抛出的全部远端错误，由各组件包装为自己的业务异常。
REMOTE_ERRORS = (httpx.HTTPError, MalformedResponseError, TokenError)


class DesignAutomationClient:
    """Design Automation 异步 HTTP 客户端封装。

    API 调用走带 bearer 令牌的客户端；包上传与报告下载使用预签名地址，
    走不带认证头的传输客户端。
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        timeout_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._closed = False
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            transport=transport,
        )
        self._transfer_client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def _client_or_raise(self) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError("DesignAutomationClient is already closed")
        return self._client

    async def aclose(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        await self._client.aclose()
        await self._transfer_client.aclose()
        self._closed = True

    async def _request(
        self,
        *,
        method: str,
        path: str,
        op: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        payload_preview: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """发送 API 请求并记录结构化日志。"""
        client = self._client_or_raise()
        started = time.perf_counter()
        try:
            token = await self._token_provider.get_token()
            response = await client.request(
                method,
                path,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except Exception as exc:
            status_code = None
            if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
                status_code = exc.response.status_code
            logger.error(
                "design automation request failed",
                extra={
                    "event": "da.request.failed",
                    "external_service": "design-automation",
                    "op": op,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": payload_preview,
                },
            )
            raise
        logger.debug(
            "design automation request completed",
            extra={
                "event": "da.request.completed",
                "external_service": "design-automation",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
        return response

    @staticmethod
    def _json(response: httpx.Response, *, op: str) -> Any:
        """解码响应体；非 JSON 响应（如网关错误页）视为结构异常。"""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{op}: response body is not JSON") from exc

    def _parse(self, model: type[ModelT], response: httpx.Response, *, op: str) -> ModelT:
        return parse_model(model, self._json(response, op=op), op=op)

    async def _list_all(self, path: str, op: str) -> list[str]:
        """按 paginationToken 逐页读取，直到没有后续页。"""
        items: list[str] = []
        token: str | None = None
        while True:
            params = {"page": token} if token else None
            response = await self._request(method="GET", path=path, op=op, params=params)
            page = self._parse(Page, response, op=op)
            items.extend(page.data)
            if not page.pagination_token:
                return items
            token = page.pagination_token

    async def list_engines(self) -> list[str]:
        return await self._list_all("/engines", "engines.list")

    async def list_appbundles(self) -> list[str]:
        return await self._list_all("/appbundles", "appbundles.list")

    async def list_activities(self) -> list[str]:
        return await self._list_all("/activities", "activities.list")

    async def create_appbundle(self, name: str, engine: str, description: str) -> AppBundleVersion:
        """首次创建 bundle，远端返回版本 1 及上传参数。"""
        response = await self._request(
            method="POST",
            path="/appbundles",
            op="appbundles.create",
            json_body={"id": name, "engine": engine, "description": description},
            payload_preview={"id": name, "engine": engine},
        )
        return self._parse(AppBundleVersion, response, op="appbundles.create")

    async def create_appbundle_version(self, name: str, engine: str, description: str) -> AppBundleVersion:
        response = await self._request(
            method="POST",
            path=f"/appbundles/{name}/versions",
            op="appbundles.versions.create",
            json_body={"engine": engine, "description": description},
            payload_preview={"id": name, "engine": engine},
        )
        return self._parse(AppBundleVersion, response, op="appbundles.versions.create")

    async def create_appbundle_alias(self, name: str, alias: str, version: int) -> AliasResponse:
        response = await self._request(
            method="POST",
            path=f"/appbundles/{name}/aliases",
            op="appbundles.aliases.create",
            json_body={"id": alias, "version": version},
            payload_preview={"id": name, "alias": alias, "version": version},
        )
        return self._parse(AliasResponse, response, op="appbundles.aliases.create")

    async def modify_appbundle_alias(self, name: str, alias: str, version: int) -> AliasResponse:
        response = await self._request(
            method="PATCH",
            path=f"/appbundles/{name}/aliases/{alias}",
            op="appbundles.aliases.modify",
            json_body={"version": version},
            payload_preview={"id": name, "alias": alias, "version": version},
        )
        return self._parse(AliasResponse, response, op="appbundles.aliases.modify")

    async def upload_package(self, upload: UploadParameters, package_path: Path) -> None:
        """按远端给出的表单字段把 bundle 包以 multipart 方式上传。"""
        started = time.perf_counter()
        form = {key: value for key, value in upload.form_data.items() if value is not None}
        try:
            content = await asyncio.to_thread(package_path.read_bytes)
            response = await self._transfer_client.post(
                upload.endpoint_url,
                data=form,
                files={"file": (package_path.name, content, "application/octet-stream")},
            )
            response.raise_for_status()
        except Exception as exc:
            logger.error(
                "bundle package upload failed",
                extra={
                    "event": "da.package.upload.failed",
                    "external_service": "design-automation",
                    "op": "appbundles.upload",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "status_code": exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"package": package_path.name},
                },
            )
            raise
        logger.info(
            "bundle package uploaded",
            extra={
                "event": "da.package.upload.succeeded",
                "external_service": "design-automation",
                "op": "appbundles.upload",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"package": package_path.name},
            },
        )

    async def create_activity(self, spec: dict[str, Any]) -> ActivityResponse:
        response = await self._request(
            method="POST",
            path="/activities",
            op="activities.create",
            json_body=spec,
            payload_preview={"id": spec.get("id"), "engine": spec.get("engine")},
        )
        return self._parse(ActivityResponse, response, op="activities.create")

    async def create_activity_alias(self, name: str, alias: str, version: int) -> AliasResponse:
        response = await self._request(
            method="POST",
            path=f"/activities/{name}/aliases",
            op="activities.aliases.create",
            json_body={"id": alias, "version": version},
            payload_preview={"id": name, "alias": alias, "version": version},
        )
        return self._parse(AliasResponse, response, op="activities.aliases.create")

    async def create_workitem(self, activity_id: str, arguments: dict[str, Any]) -> WorkItemStatusPayload:
        response = await self._request(
            method="POST",
            path="/workitems",
            op="workitems.create",
            json_body={"activityId": activity_id, "arguments": arguments},
            payload_preview={"activityId": activity_id, "arguments": sorted(arguments)},
        )
        return WorkItemStatusPayload.from_raw(self._json(response, op="workitems.create"))

    async def get_workitem(self, workitem_id: str) -> WorkItemStatusPayload:
        response = await self._request(
            method="GET",
            path=f"/workitems/{workitem_id}",
            op="workitems.get",
            payload_preview={"id": workitem_id},
        )
        return WorkItemStatusPayload.from_raw(self._json(response, op="workitems.get"))

    async def fetch_report(self, report_url: str) -> str:
        """下载工作项执行报告文本。"""
        started = time.perf_counter()
        try:
            response = await self._transfer_client.get(report_url)
            response.raise_for_status()
        except Exception as exc:
            logger.error(
                "workitem report fetch failed",
                extra={
                    "event": "da.report.fetch.failed",
                    "external_service": "design-automation",
                    "op": "workitems.report",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise
        return response.text
