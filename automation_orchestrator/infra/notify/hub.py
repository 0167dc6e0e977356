"""通知通道：按连接 ID 寻址的 WebSocket 连接注册表。"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, connection_id: str, event: str, data: Any) -> bool: ...


class ConnectionHub:
    """WebSocket 连接中心；向未知或已断开的连接投递时返回 False 而不抛出。"""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """接受连接并把分配的连接 ID 作为首条消息下发。"""
        await websocket.accept()
        connection_id = uuid4().hex
        self._connections[connection_id] = websocket
        await websocket.send_json({"event": "connected", "data": connection_id})
        logger.info(
            "notification connection opened",
            extra={"event": "hub.connection.opened", "connection_id": connection_id},
        )
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.info(
                "notification connection closed",
                extra={"event": "hub.connection.closed", "connection_id": connection_id},
            )

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.warning(
                "notification target not connected",
                extra={"event": "hub.send.unknown_connection", "connection_id": connection_id, "op": event},
            )
            return False
        try:
            await websocket.send_json({"event": event, "data": data})
        except Exception:
            # 发送失败说明连接已失效，摘除后交由调用方记录。
            self.disconnect(connection_id)
            raise
        return True
