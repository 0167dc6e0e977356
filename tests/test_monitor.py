"""轮询状态机测试：通知次序、终态收尾与异常终止。"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

import httpx

from automation_orchestrator.application.monitor import MonitorSupervisor, WorkItemMonitor
from automation_orchestrator.application.relay import CompletionRelay
from automation_orchestrator.domain.enums import NotificationKind, WorkItemStatus
from automation_orchestrator.domain.models import ConnectionSubscription, WorkItem

from conftest import FakeDesignAutomation, FakeS3, RecordingNotifier, make_stager

REPORT_URL = "https://reports.test/wi-1.txt"


def _setup(statuses: list[Any], **monitor_kwargs: Any) -> tuple[WorkItemMonitor, FakeDesignAutomation, RecordingNotifier]:
    timeline: list[str] = []
    client = FakeDesignAutomation(statuses=statuses, timeline=timeline)
    notifier = RecordingNotifier(timeline)
    stager = make_stager(FakeS3())
    relay = CompletionRelay(client=client, stager=stager, notifier=notifier)
    monitor = WorkItemMonitor(
        workitem=WorkItem(id="wi-1", activity_id="owner.SampleActivity+dev", status=WorkItemStatus.pending, raw_status="pending"),
        subscription=ConnectionSubscription(connection_id="conn-1", workitem_id="wi-1"),
        output=stager.reserve("drawing.dwg.txt"),
        client=client,
        relay=relay,
        poll_interval_seconds=monitor_kwargs.pop("poll_interval_seconds", 0.001),
        **monitor_kwargs,
    )
    return monitor, client, notifier


def test_success_relays_every_status_then_report_then_download() -> None:
    monitor, client, notifier = _setup(
        [
            {"id": "wi-1", "status": "pending"},
            {"id": "wi-1", "status": "inprogress"},
            {"id": "wi-1", "status": "inprogress"},
            {"id": "wi-1", "status": "success", "reportUrl": REPORT_URL},
        ]
    )

    final = asyncio.run(monitor.run())

    assert final is WorkItemStatus.success
    assert notifier.kinds() == [NotificationKind.status] * 5 + [NotificationKind.download]
    assert json.loads(notifier.sent[3][2])["status"] == "success"
    assert notifier.sent[4][2] == "report body"
    assert "_output_drawing.dwg.txt" in notifier.sent[5][2]
    assert monitor.observed == [
        WorkItemStatus.pending,
        WorkItemStatus.inprogress,
        WorkItemStatus.inprogress,
        WorkItemStatus.success,
    ]
    assert ("fetch_report", REPORT_URL) in client.calls


def test_each_status_is_relayed_before_next_poll() -> None:
    monitor, client, _notifier = _setup(
        [
            {"id": "wi-1", "status": "pending"},
            {"id": "wi-1", "status": "inprogress"},
            {"id": "wi-1", "status": "success"},
        ]
    )

    asyncio.run(monitor.run())

    assert client.timeline[:6] == [
        "poll",
        "notify:onComplete",
        "poll",
        "notify:onComplete",
        "poll",
        "notify:onComplete",
    ]
    # 没有报告地址时只转发下载地址。
    assert client.timeline[6:] == ["notify:downloadResult"]


def test_failure_relays_report_without_download() -> None:
    monitor, _client, notifier = _setup(
        [
            {"id": "wi-1", "status": "pending"},
            {"id": "wi-1", "status": "failedInstructions", "reportUrl": REPORT_URL},
        ]
    )

    final = asyncio.run(monitor.run())

    assert final is WorkItemStatus.failed
    assert notifier.kinds() == [NotificationKind.status] * 3
    assert notifier.sent[-1][2] == "report body"


def test_polling_error_is_relayed_once_without_retry() -> None:
    monitor, client, notifier = _setup(
        [
            {"id": "wi-1", "status": "pending"},
            httpx.ConnectError("connection reset"),
            {"id": "wi-1", "status": "success"},
        ]
    )

    final = asyncio.run(monitor.run())

    assert final is None
    assert [call[0] for call in client.calls].count("get_workitem") == 2
    assert notifier.kinds() == [NotificationKind.status, NotificationKind.status]
    assert notifier.sent[-1][2].startswith("PollingError:")


def test_malformed_status_payload_terminates_monitor() -> None:
    monitor, _client, notifier = _setup([{"id": "wi-1"}])

    assert asyncio.run(monitor.run()) is None
    assert len(notifier.sent) == 1
    assert notifier.sent[0][2].startswith("PollingError:")


def test_deadline_stops_polling() -> None:
    ticks = itertools.chain([0.0, 1.0], itertools.repeat(10.0))
    monitor, client, notifier = _setup(
        [{"id": "wi-1", "status": "inprogress"}, {"id": "wi-1", "status": "inprogress"}],
        max_duration_seconds=5,
        clock=lambda: next(ticks),
    )

    assert asyncio.run(monitor.run()) is None
    assert [call[0] for call in client.calls] == ["get_workitem"]
    assert notifier.sent[-1][2].startswith("PollingTimeoutError:")


def test_cancel_before_first_poll() -> None:
    cancel = asyncio.Event()
    cancel.set()
    monitor, client, notifier = _setup([{"id": "wi-1", "status": "pending"}], cancel_event=cancel)

    assert asyncio.run(monitor.run()) is None
    assert client.calls == []
    assert notifier.sent[0][2].startswith("MonitorCancelledError:")


def test_supervisor_forgets_finished_monitors() -> None:
    client = FakeDesignAutomation(statuses=[{"id": "wi-1", "status": "success"}])
    notifier = RecordingNotifier()
    stager = make_stager(FakeS3())
    supervisor = MonitorSupervisor(
        client=client,
        relay=CompletionRelay(client=client, stager=stager, notifier=notifier),
        poll_interval_seconds=0.001,
        max_duration_seconds=60,
    )

    async def _run() -> tuple[list[str], WorkItemStatus | None, list[str]]:
        task = supervisor.spawn(
            WorkItem(id="wi-1", activity_id="owner.A+dev", status=WorkItemStatus.pending, raw_status="pending"),
            ConnectionSubscription(connection_id="conn-1", workitem_id="wi-1"),
            stager.reserve("out.txt"),
        )
        running = supervisor.active()
        result = await task
        await asyncio.sleep(0)
        return running, result, supervisor.active()

    running, result, remaining = asyncio.run(_run())

    assert running == ["wi-1"]
    assert result is WorkItemStatus.success
    assert remaining == []


def test_supervisor_shutdown_cancels_running_monitors() -> None:
    client = FakeDesignAutomation(statuses=[{"id": "wi-1", "status": "inprogress"}] * 1000)
    notifier = RecordingNotifier()
    stager = make_stager(FakeS3())
    supervisor = MonitorSupervisor(
        client=client,
        relay=CompletionRelay(client=client, stager=stager, notifier=notifier),
        poll_interval_seconds=0.01,
        max_duration_seconds=60,
    )

    async def _run() -> None:
        supervisor.spawn(
            WorkItem(id="wi-1", activity_id="owner.A+dev", status=WorkItemStatus.pending, raw_status="pending"),
            ConnectionSubscription(connection_id="conn-1", workitem_id="wi-1"),
            stager.reserve("out.txt"),
        )
        await asyncio.sleep(0.05)
        await supervisor.shutdown()

    asyncio.run(_run())

    assert notifier.sent[-1][2].startswith("MonitorCancelledError:")
