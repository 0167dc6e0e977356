"""通知通道接口：客户端通过 WebSocket 订阅，首条消息返回连接 ID。"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from automation_orchestrator.application.container import get_connection_hub

router = APIRouter()


@router.websocket("/hub")
async def notification_hub(websocket: WebSocket) -> None:
    hub = get_connection_hub()
    connection_id = await hub.connect(websocket)
    try:
        while True:
            # 客户端消息只用于保活，服务端不处理内容。
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)
