"""Design Automation 接口：引擎查询、bundle/活动准备、工作项提交与回调接收。"""

from __future__ import annotations

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import ValidationError

from automation_orchestrator.api.v1.schemas import (
    ActivityResponse,
    AppBundleResponse,
    BundleSpecRequest,
    WorkItemDetailResponse,
    WorkItemRequestData,
    WorkItemStartResponse,
)
from automation_orchestrator.application.callback import CallbackReceiver
from automation_orchestrator.application.container import get_automation_service, get_callback_receiver
from automation_orchestrator.application.orchestrator import AutomationService, UploadedFileData
from automation_orchestrator.domain.errors import (
    CallbackParseError,
    ProvisioningError,
    StagingError,
    SubmissionError,
    UnsupportedEngineError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _service() -> AutomationService:
    return get_automation_service()


def _callback_receiver() -> CallbackReceiver:
    return get_callback_receiver()


@router.get("/appbundles")
def list_local_bundles(service: AutomationService = Depends(_service)) -> list[str]:
    """列出本地可用的 bundle 包。"""
    return service.list_local_bundles()


@router.get("/aps/designautomation/engines")
async def list_engines(service: AutomationService = Depends(_service)) -> list[str]:
    try:
        return await service.list_engines()
    except ProvisioningError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.post("/aps/designautomation/appbundles", response_model=AppBundleResponse)
async def create_app_bundle(
    spec: BundleSpecRequest,
    service: AutomationService = Depends(_service),
) -> AppBundleResponse:
    """创建 bundle 或追加新版本并上传包。"""
    logger.info("create_app_bundle requested: zip=%s engine=%s", spec.zip_file_name, spec.engine)
    try:
        result = await service.create_app_bundle(spec.zip_file_name, spec.engine)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProvisioningError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return AppBundleResponse(app_bundle=result.qualified_id, version=result.version, created=result.created)


@router.post("/aps/designautomation/activities", response_model=ActivityResponse)
async def create_activity(
    spec: BundleSpecRequest,
    service: AutomationService = Depends(_service),
) -> ActivityResponse:
    """确保活动存在；已定义时原样返回。"""
    try:
        result = await service.create_activity(spec.zip_file_name, spec.engine)
    except UnsupportedEngineError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProvisioningError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ActivityResponse(activity=result.qualified_id, created=result.created)


@router.get("/aps/designautomation/activities")
async def list_defined_activities(service: AutomationService = Depends(_service)) -> list[str]:
    try:
        return await service.list_defined_activities()
    except ProvisioningError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.post(
    "/aps/designautomation/workitems",
    response_model=WorkItemStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_workitem(
    input_file: Annotated[UploadFile, File(alias="inputFile")],
    data: Annotated[str, Form()],
    service: AutomationService = Depends(_service),
) -> WorkItemStartResponse:
    """暂存输入文件并提交工作项，进度通过通知通道推送。"""
    try:
        request_data = WorkItemRequestData.model_validate(json.loads(data))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"invalid workitem data: {exc}") from exc

    content = await input_file.read()
    upload = UploadedFileData(
        filename=input_file.filename or "input.bin",
        content=content,
        content_type=input_file.content_type,
    )
    try:
        workitem = await service.start_workitem(
            activity_name=request_data.activity_name,
            connection_id=request_data.browser_connection_id,
            upload=upload,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (StagingError, SubmissionError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return WorkItemStartResponse(work_item_id=workitem.id, status=workitem.raw_status)


@router.get("/aps/designautomation/workitems/{workitem_id}", response_model=WorkItemDetailResponse)
def get_workitem(
    workitem_id: str,
    service: AutomationService = Depends(_service),
) -> WorkItemDetailResponse:
    """查询工作项台账。"""
    try:
        item = service.get_workitem(workitem_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return WorkItemDetailResponse(
        work_item_id=item.id,
        activity_id=item.activity_id,
        connection_id=item.connection_id,
        delivery_mode=item.delivery_mode,
        status=item.status,
        raw_status=item.raw_status,
        report_url=item.report_url,
        error_message=item.error_message,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


@router.post("/aps/designautomation/workitems/{workitem_id}/monitor/cancel")
async def cancel_monitoring(
    workitem_id: str,
    service: AutomationService = Depends(_service),
) -> dict[str, str]:
    if not service.cancel_monitoring(workitem_id):
        raise HTTPException(status_code=404, detail=f"no active monitor for workitem {workitem_id}")
    return {"workItemId": workitem_id, "status": "cancelling"}


@router.post("/aps/callback/designautomation")
async def on_callback(
    request: Request,
    connection_id: Annotated[str, Query(alias="id")],
    output_file_name: Annotated[str, Query(alias="outputFileName")],
    receiver: CallbackReceiver = Depends(_callback_receiver),
) -> dict[str, str]:
    """接收远端 onComplete 回调。"""
    body = await request.body()
    try:
        outcome = await receiver.on_callback(connection_id, output_file_name, body)
    except CallbackParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": outcome.value if outcome is not None else "relay_failed"}
