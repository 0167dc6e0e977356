"""回调接收：解析远端推送的终态负载，按与轮询相同的通知契约转发。"""

from __future__ import annotations

import json
import logging
from typing import Any

from automation_orchestrator.application.relay import CompletionRelay
from automation_orchestrator.domain.enums import WorkItemStatus
from automation_orchestrator.domain.errors import CallbackParseError
from automation_orchestrator.domain.models import ConnectionSubscription, ObjectHandle
from automation_orchestrator.infra.designautomation.schemas import MalformedResponseError, WorkItemStatusPayload
from automation_orchestrator.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


def parse_callback_payload(payload: Any) -> WorkItemStatusPayload:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise CallbackParseError(f"callback body is not JSON: {exc}") from exc
    try:
        return WorkItemStatusPayload.from_raw(payload)
    except MalformedResponseError as exc:
        raise CallbackParseError(str(exc)) from exc


class CallbackReceiver:
    """推送式终态通知入口。"""

    def __init__(self, *, relay: CompletionRelay, bucket: str) -> None:
        self._relay = relay
        self._bucket = bucket

    async def on_callback(self, connection_id: str, output_name: str, payload: Any) -> WorkItemStatus | None:
        """处理一次回调；负载不合法时转发错误后抛 CallbackParseError，其余错误只转发。"""
        with bind_log_context(connection_id=connection_id):
            try:
                if not output_name:
                    raise CallbackParseError("callback is missing the output object name")
                parsed = parse_callback_payload(payload)
            except CallbackParseError as exc:
                logger.warning(
                    "malformed workitem callback",
                    extra={"event": "workitem.callback.invalid", "error_type": type(exc).__name__, "error": str(exc)},
                )
                await self._relay.relay_error(ConnectionSubscription(connection_id=connection_id, workitem_id=""), exc)
                raise

            subscription = ConnectionSubscription(connection_id=connection_id, workitem_id=parsed.id)
            output = ObjectHandle(bucket=self._bucket, key=output_name)
            with bind_log_context(workitem_id=parsed.id):
                logger.info(
                    "workitem callback received",
                    extra={"event": "workitem.callback.received", "payload_preview": {"status": parsed.status}},
                )
                try:
                    await self._relay.relay_status(subscription, parsed)
                    await self._relay.complete(subscription, parsed, output)
                except Exception as exc:
                    logger.warning(
                        "workitem callback relay stopped",
                        extra={
                            "event": "workitem.callback.aborted",
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        },
                    )
                    await self._relay.relay_error(subscription, exc)
                    return None
            return parsed.lifecycle
