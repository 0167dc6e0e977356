"""API 请求/响应数据模型定义，约束 bundle、活动与工作项接口结构。"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BundleSpecRequest(_CamelModel):
    """创建 bundle / 活动共用的请求体。"""
    zip_file_name: str = Field(alias="zipFileName", min_length=1)
    engine: str = Field(min_length=1)


class AppBundleResponse(_CamelModel):
    app_bundle: str = Field(serialization_alias="appBundle")
    version: int
    created: bool


class ActivityResponse(_CamelModel):
    activity: str
    created: bool


class WorkItemRequestData(_CamelModel):
    """工作项提交表单中 data 字段的 JSON 结构。"""
    activity_name: str = Field(alias="activityName", min_length=1)
    browser_connection_id: str = Field(alias="browserConnectionId", min_length=1)


class WorkItemStartResponse(_CamelModel):
    work_item_id: str = Field(serialization_alias="workItemId")
    status: str


class WorkItemDetailResponse(_CamelModel):
    """工作项台账详情。"""
    work_item_id: str = Field(serialization_alias="workItemId")
    activity_id: str = Field(serialization_alias="activityId")
    connection_id: str = Field(serialization_alias="connectionId")
    delivery_mode: str = Field(serialization_alias="deliveryMode")
    status: str
    raw_status: str = Field(serialization_alias="rawStatus")
    report_url: str | None = Field(default=None, serialization_alias="reportUrl")
    error_message: str | None = Field(default=None, serialization_alias="errorMessage")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
