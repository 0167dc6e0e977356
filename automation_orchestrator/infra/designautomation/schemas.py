"""Design Automation 响应模型：在边界处把远端 JSON 校验为具名字段。"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from automation_orchestrator.domain.enums import WorkItemStatus


class MalformedResponseError(ValueError):
    """远端响应结构与预期不符。"""


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Page(_ApiModel):
    """分页列表响应。"""
    data: list[str] = Field(default_factory=list)
    pagination_token: str | None = Field(default=None, alias="paginationToken")


class UploadParameters(_ApiModel):
    """bundle 包上传目标：表单字段 + 端点。"""
    endpoint_url: str = Field(alias="endpointURL")
    form_data: dict[str, str | None] = Field(default_factory=dict, alias="formData")


class AppBundleVersion(_ApiModel):
    """创建 bundle 或新版本后的响应。"""
    id: str | None = None
    engine: str | None = None
    version: int = Field(ge=1)
    upload_parameters: UploadParameters = Field(alias="uploadParameters")


class AliasResponse(_ApiModel):
    id: str
    version: int = Field(ge=1)


class ActivityResponse(_ApiModel):
    id: str
    version: int | None = None


class WorkItemStatusPayload(_ApiModel):
    """工作项状态快照，原始 JSON 保留在 raw 中用于原样转发。"""
    id: str
    status: str
    report_url: str | None = Field(default=None, alias="reportUrl")
    progress: str | None = None
    stats: dict[str, Any] | None = None

    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: str) -> str:
        WorkItemStatus.from_remote(value)
        return value

    @property
    def lifecycle(self) -> WorkItemStatus:
        return WorkItemStatus.from_remote(self.status)

    @property
    def raw(self) -> dict[str, Any]:
        return self._raw

    @classmethod
    def from_raw(cls, payload: Any) -> "WorkItemStatusPayload":
        model = parse_model(cls, payload, op="workitem.status")
        model._raw = dict(payload)
        return model


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model: type[ModelT], payload: Any, *, op: str) -> ModelT:
    """校验响应负载；空响应或字段缺失统一抛 MalformedResponseError。"""
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"{op}: expected JSON object, got {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"{op}: {exc.error_count()} invalid field(s): {exc.errors()[0]['msg']}") from exc
