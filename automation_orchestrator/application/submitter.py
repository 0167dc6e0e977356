"""工作项提交：把输入/输出访问描述符绑定到活动参数并创建远端工作项。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from automation_orchestrator.domain.enums import Verb
from automation_orchestrator.domain.errors import SubmissionError
from automation_orchestrator.domain.models import Artifact, WorkItem
from automation_orchestrator.infra.designautomation.client import REMOTE_ERRORS, DesignAutomationClient

logger = logging.getLogger(__name__)


def _unlink(path: Path) -> None:
    path.unlink(missing_ok=True)


class JobSubmitter:
    """工作项提交器；本层不重试，失败统一抛 SubmissionError。"""

    def __init__(self, client: DesignAutomationClient, *, discard: Callable[[Path], None] = _unlink) -> None:
        self._client = client
        self._discard = discard

    def build_arguments(
        self,
        input_artifact: Artifact,
        output_artifact: Artifact,
        callback_url: str | None = None,
    ) -> dict[str, Any]:
        if input_artifact.descriptor.verb is not Verb.get:
            raise SubmissionError(f"input artifact must be readable, got verb {input_artifact.descriptor.verb.value}")
        if output_artifact.descriptor.verb is not Verb.put:
            raise SubmissionError(f"output artifact must be writable, got verb {output_artifact.descriptor.verb.value}")
        arguments: dict[str, Any] = {
            "inputFile": input_artifact.descriptor.to_argument(),
            "outputFile": output_artifact.descriptor.to_argument(),
        }
        if callback_url:
            arguments["onComplete"] = {"verb": Verb.post.value, "url": callback_url}
        return arguments

    async def submit(
        self,
        activity_id: str,
        input_artifact: Artifact,
        output_artifact: Artifact,
        *,
        callback_url: str | None = None,
    ) -> WorkItem:
        arguments = self.build_arguments(input_artifact, output_artifact, callback_url)

        # 远端只消费描述符，本地暂存文件此时即可删除。
        for artifact in (input_artifact, output_artifact):
            if artifact.local_path is not None:
                self._discard(artifact.local_path)
                artifact.local_path = None

        try:
            payload = await self._client.create_workitem(activity_id, arguments)
        except REMOTE_ERRORS as exc:
            raise SubmissionError(f"cannot create workitem for {activity_id}: {exc}") from exc

        logger.info(
            "workitem submitted",
            extra={
                "event": "workitem.submitted",
                "external_service": "design-automation",
                "op": "workitems.create",
                "workitem_id": payload.id,
                "payload_preview": {"activityId": activity_id, "status": payload.status},
            },
        )
        return WorkItem(
            id=payload.id,
            activity_id=activity_id,
            status=payload.lifecycle,
            raw_status=payload.status,
            report_url=payload.report_url,
            artifacts={"inputFile": input_artifact, "outputFile": output_artifact},
            payload=payload.raw,
        )
