"""回调接收测试：与轮询相同的通知契约，以及非法负载处理。"""

from __future__ import annotations

import asyncio
import json

import pytest

from automation_orchestrator.application.callback import CallbackReceiver, parse_callback_payload
from automation_orchestrator.application.relay import CompletionRelay
from automation_orchestrator.domain.enums import DeliveryMode, NotificationKind, WorkItemStatus
from automation_orchestrator.domain.errors import CallbackParseError
from automation_orchestrator.infra.db.repository import WorkItemRepository

from conftest import FakeDesignAutomation, FakeS3, RecordingNotifier, make_stager


def _receiver(repository: WorkItemRepository | None = None) -> tuple[CallbackReceiver, RecordingNotifier]:
    client = FakeDesignAutomation()
    notifier = RecordingNotifier()
    relay = CompletionRelay(client=client, stager=make_stager(FakeS3()), notifier=notifier, repository=repository)
    return CallbackReceiver(relay=relay, bucket="owner-designautomation"), notifier


def test_success_callback_relays_status_report_and_download() -> None:
    receiver, notifier = _receiver()
    body = json.dumps({"id": "wi-1", "status": "success", "reportUrl": "https://reports.test/wi-1.txt"}).encode()

    outcome = asyncio.run(receiver.on_callback("conn-1", "20240101_output_drawing.dwg.txt", body))

    assert outcome is WorkItemStatus.success
    assert notifier.kinds() == [NotificationKind.status, NotificationKind.status, NotificationKind.download]
    assert json.loads(notifier.sent[0][2])["id"] == "wi-1"
    assert notifier.sent[1][2] == "report body"
    assert "20240101_output_drawing.dwg.txt" in notifier.sent[2][2]
    assert all(connection_id == "conn-1" for connection_id, _kind, _message in notifier.sent)


def test_failed_callback_skips_download() -> None:
    receiver, notifier = _receiver()
    body = {"id": "wi-1", "status": "failedDownload", "reportUrl": "https://reports.test/wi-1.txt"}

    outcome = asyncio.run(receiver.on_callback("conn-1", "out.txt", body))

    assert outcome is WorkItemStatus.failed
    assert notifier.kinds() == [NotificationKind.status, NotificationKind.status]


def test_malformed_callback_relays_error_and_raises() -> None:
    receiver, notifier = _receiver()

    with pytest.raises(CallbackParseError):
        asyncio.run(receiver.on_callback("conn-1", "out.txt", b"not json"))
    assert len(notifier.sent) == 1
    assert notifier.sent[0][2].startswith("CallbackParseError:")


def test_missing_output_name_is_rejected() -> None:
    receiver, notifier = _receiver()

    with pytest.raises(CallbackParseError):
        asyncio.run(receiver.on_callback("conn-1", "", {"id": "wi-1", "status": "success"}))
    assert notifier.kinds() == [NotificationKind.status]


def test_parse_callback_payload_rejects_unknown_status() -> None:
    with pytest.raises(CallbackParseError):
        parse_callback_payload('{"id": "wi-1", "status": "paused"}')


def test_callback_updates_ledger(repository: WorkItemRepository) -> None:
    repository.create_work_item(
        workitem_id="wi-1",
        activity_id="owner.SampleActivity+dev",
        connection_id="conn-1",
        delivery_mode=DeliveryMode.callback,
        status=WorkItemStatus.pending,
        raw_status="pending",
        input_object_key="in",
        output_object_key="out.txt",
    )
    receiver, _notifier = _receiver(repository)

    asyncio.run(receiver.on_callback("conn-1", "out.txt", {"id": "wi-1", "status": "success"}))

    item = repository.get_work_item("wi-1")
    assert item is not None
    assert item.status == WorkItemStatus.success.value
    event_types = [event.event_type for event in repository.list_events("wi-1")]
    assert event_types == ["workitem.submitted", "workitem.status.observed", "workitem.download.relayed"]
