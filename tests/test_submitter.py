"""工作项提交测试：参数绑定、本地文件清理与错误归类。"""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from automation_orchestrator.application.submitter import JobSubmitter
from automation_orchestrator.domain.enums import Verb, WorkItemStatus
from automation_orchestrator.domain.errors import SubmissionError
from automation_orchestrator.domain.models import Artifact
from automation_orchestrator.infra.designautomation.auth import ApsCredentials, ApsTokenProvider
from automation_orchestrator.infra.designautomation.client import DesignAutomationClient

from conftest import FakeDesignAutomation, FakeS3, make_stager


def _artifacts(tmp_path: Path, input_verb: Verb = Verb.get) -> tuple[Artifact, Artifact]:
    stager = make_stager(FakeS3())
    local = tmp_path / "drawing.dwg"
    local.write_bytes(b"dwg-bytes")
    input_handle = stager.reserve("drawing.dwg", role="input")
    output_handle = stager.reserve("drawing.dwg.txt")
    input_artifact = Artifact(
        name="inputFile",
        handle=input_handle,
        descriptor=stager.build_access_descriptor(input_handle, input_verb),
        local_path=local,
    )
    output_artifact = Artifact(
        name="outputFile",
        handle=output_handle,
        descriptor=stager.build_access_descriptor(output_handle, Verb.put, local_name="outputFile.txt"),
    )
    return input_artifact, output_artifact


def test_submit_binds_descriptors_and_discards_local_file(tmp_path: Path) -> None:
    client = FakeDesignAutomation()
    input_artifact, output_artifact = _artifacts(tmp_path)
    local = input_artifact.local_path

    workitem = asyncio.run(JobSubmitter(client).submit("owner.SampleActivity+dev", input_artifact, output_artifact))

    assert workitem.id == "wi-1"
    assert workitem.status is WorkItemStatus.pending
    assert local is not None and not local.exists()
    assert input_artifact.local_path is None
    arguments = client.workitem_arguments[0]
    assert arguments["inputFile"] == {"url": input_artifact.descriptor.url, "verb": "get"}
    assert arguments["outputFile"]["verb"] == "put"
    assert arguments["outputFile"]["localName"] == "outputFile.txt"
    assert "onComplete" not in arguments


def test_submit_adds_callback_argument(tmp_path: Path) -> None:
    client = FakeDesignAutomation()
    input_artifact, output_artifact = _artifacts(tmp_path)
    callback = "https://orchestrator.test/api/aps/callback/designautomation?id=conn-1"

    asyncio.run(
        JobSubmitter(client).submit("owner.SampleActivity+dev", input_artifact, output_artifact, callback_url=callback)
    )

    assert client.workitem_arguments[0]["onComplete"] == {"verb": "post", "url": callback}


def test_remote_failure_is_submission_error(tmp_path: Path) -> None:
    client = FakeDesignAutomation(workitem_error=httpx.ConnectError("refused"))
    input_artifact, output_artifact = _artifacts(tmp_path)
    local = input_artifact.local_path

    with pytest.raises(SubmissionError):
        asyncio.run(JobSubmitter(client).submit("owner.SampleActivity+dev", input_artifact, output_artifact))
    assert local is not None and not local.exists()


def test_wrong_verb_is_rejected_before_remote_call(tmp_path: Path) -> None:
    client = FakeDesignAutomation()
    input_artifact, output_artifact = _artifacts(tmp_path, input_verb=Verb.put)

    with pytest.raises(SubmissionError, match="readable"):
        asyncio.run(JobSubmitter(client).submit("owner.SampleActivity+dev", input_artifact, output_artifact))
    assert client.calls == []


def test_token_failure_is_submission_error(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "wi-1", "status": "pending"})

    input_artifact, output_artifact = _artifacts(tmp_path)

    async def _run() -> None:
        provider = ApsTokenProvider("https://aps.test", ApsCredentials(client_id="", client_secret=None, scopes=[]))
        client = DesignAutomationClient("https://da.test/da/us-east/v3", provider, transport=httpx.MockTransport(handler))
        try:
            await JobSubmitter(client).submit("owner.SampleActivity+dev", input_artifact, output_artifact)
        finally:
            await client.aclose()
            await provider.aclose()

    with pytest.raises(SubmissionError, match="not configured"):
        asyncio.run(_run())
    assert requests == []
