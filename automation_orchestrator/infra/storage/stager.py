"""产物暂存：把本地文件上传到对象存储，并签发有时效的读写访问描述符。"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from automation_orchestrator.domain.enums import Verb
from automation_orchestrator.domain.errors import (
    ArtifactReadError,
    ArtifactUploadError,
    BucketProvisioningError,
    StagingError,
)
from automation_orchestrator.domain.models import AccessDescriptor, ObjectHandle

logger = logging.getLogger(__name__)

_BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_PRESIGN_METHODS = {Verb.get: "get_object", Verb.put: "put_object"}


def _utc_salt() -> int:
    return int(datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f"))


class ArtifactStager:
    """S3 兼容对象存储上的产物暂存器。

    对象名以提交时间戳加盐，同一文件重复暂存得到不同对象；本层不做重试。
    """

    def __init__(
        self,
        s3_client: Any,
        *,
        bucket: str,
        region: str,
        descriptor_ttl_seconds: int,
        download_ttl_seconds: int,
        salt_source: Callable[[], int] = _utc_salt,
    ) -> None:
        self._s3 = s3_client
        self._bucket = bucket
        self._region = region
        self._descriptor_ttl_seconds = descriptor_ttl_seconds
        self._download_ttl_seconds = download_ttl_seconds
        self._salt_source = salt_source
        self._last_salt = 0
        self._bucket_ready = False
        self._bucket_lock = asyncio.Lock()

    @property
    def bucket(self) -> str:
        return self._bucket

    def _next_salt(self) -> str:
        # 同一微秒内的连续调用也要得到不同的对象名。
        salt = max(self._salt_source(), self._last_salt + 1)
        self._last_salt = salt
        return str(salt)

    def object_key(self, filename: str, role: str) -> str:
        return f"{self._next_salt()}_{role}_{Path(filename).name}"

    async def ensure_bucket(self) -> None:
        """惰性创建存储桶；已存在视为成功。"""
        async with self._bucket_lock:
            if self._bucket_ready:
                return
            kwargs: dict[str, Any] = {"Bucket": self._bucket}
            if self._region and self._region != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
            try:
                await asyncio.to_thread(self._s3.create_bucket, **kwargs)
                logger.info(
                    "storage bucket created",
                    extra={"event": "storage.bucket.created", "external_service": "s3", "op": "create_bucket"},
                )
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code not in _BUCKET_EXISTS_CODES:
                    raise BucketProvisioningError(f"cannot create bucket {self._bucket}: {code or exc}") from exc
            except BotoCoreError as exc:
                raise BucketProvisioningError(f"cannot create bucket {self._bucket}: {exc}") from exc
            self._bucket_ready = True

    async def stage(self, local_path: Path, *, role: str = "input") -> ObjectHandle:
        """上传本地文件并返回持久对象句柄。"""
        await self.ensure_bucket()
        try:
            content = await asyncio.to_thread(local_path.read_bytes)
        except OSError as exc:
            raise ArtifactReadError(f"cannot read staged file {local_path.name}: {exc}") from exc

        key = self.object_key(local_path.name, role)
        started = time.perf_counter()
        try:
            await asyncio.to_thread(self._s3.put_object, Bucket=self._bucket, Key=key, Body=content)
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "artifact upload failed",
                extra={
                    "event": "storage.upload.failed",
                    "external_service": "s3",
                    "op": "put_object",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"key": key},
                },
            )
            raise ArtifactUploadError(f"cannot upload {local_path.name} to {self._bucket}: {exc}") from exc
        logger.info(
            "artifact staged",
            extra={
                "event": "storage.upload.succeeded",
                "external_service": "s3",
                "op": "put_object",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"key": key, "size_bytes": len(content)},
            },
        )
        return ObjectHandle(bucket=self._bucket, key=key, size_bytes=len(content))

    def reserve(self, filename: str, *, role: str = "output") -> ObjectHandle:
        """为远端引擎将要写入的输出预留对象名，不做 I/O。"""
        return ObjectHandle(bucket=self._bucket, key=self.object_key(filename, role))

    def build_access_descriptor(
        self,
        handle: ObjectHandle,
        verb: Verb,
        headers: dict[str, str] | None = None,
        local_name: str | None = None,
    ) -> AccessDescriptor:
        """本地签发按动词限定的预签名地址。"""
        method = _PRESIGN_METHODS.get(verb)
        if method is None:
            raise ValueError(f"verb {verb.value} is not supported for storage objects")
        try:
            url = self._s3.generate_presigned_url(
                method,
                Params={"Bucket": handle.bucket, "Key": handle.key},
                ExpiresIn=self._descriptor_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StagingError(f"cannot presign {verb.value} access for {handle.key}: {exc}") from exc
        return AccessDescriptor(url=url, verb=verb, headers=dict(headers or {}), local_name=local_name)

    async def resolve_download_url(self, handle: ObjectHandle) -> str:
        """生成输出对象的限时下载地址。"""
        try:
            return await asyncio.to_thread(
                self._s3.generate_presigned_url,
                "get_object",
                Params={"Bucket": handle.bucket, "Key": handle.key},
                ExpiresIn=self._download_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StagingError(f"cannot resolve download url for {handle.key}: {exc}") from exc
