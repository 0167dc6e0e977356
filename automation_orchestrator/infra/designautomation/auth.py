"""APS OAuth 客户端凭据令牌获取与缓存。"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

import httpx

from automation_orchestrator.domain.errors import TokenError

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


@dataclass(slots=True)
class ApsCredentials:
    """APS 应用凭据对象。"""
    client_id: str
    client_secret: str | None
    scopes: list[str]


class ApsTokenProvider:
    """两腿 OAuth 令牌提供者，过期前 60 秒刷新。"""

    _REFRESH_MARGIN_SECONDS = 60

    def __init__(
        self,
        base_url: str,
        credentials: ApsCredentials,
        timeout_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        """返回可用的 bearer 令牌，必要时向 APS 重新申请。"""
        async with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token
            if not self._credentials.client_id or not self._credentials.client_secret:
                raise TokenError("APS client credentials are not configured")
            started = time.perf_counter()
            try:
                response = await self._client.post(
                    "/authentication/v2/token",
                    data={"grant_type": "client_credentials", "scope": " ".join(self._credentials.scopes)},
                    auth=(self._credentials.client_id, self._credentials.client_secret),
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error(
                    "aps token request failed",
                    extra={
                        "event": "aps.token.failed",
                        "external_service": "aps-oauth",
                        "op": "token",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "status_code": exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise
            try:
                payload = response.json()
            except ValueError as exc:
                raise TokenError("APS token response is not JSON") from exc
            token = payload.get("access_token") if isinstance(payload, dict) else None
            if not token:
                raise TokenError("missing access_token from APS token response")
            try:
                expires_in = int(payload.get("expires_in", 3599))
            except (TypeError, ValueError) as exc:
                raise TokenError("invalid expires_in in APS token response") from exc
            self._token = str(token)
            self._expires_at = time.monotonic() + max(expires_in - self._REFRESH_MARGIN_SECONDS, 0)
            logger.info(
                "aps token refreshed",
                extra={"event": "aps.token.refreshed", "external_service": "aps-oauth", "op": "token"},
            )
            return self._token

    async def aclose(self) -> None:
        await self._client.aclose()
