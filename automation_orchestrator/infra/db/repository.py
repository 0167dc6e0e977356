"""仓储实现：封装工作项台账、状态流转与事件记录。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from automation_orchestrator.domain.enums import DeliveryMode, WorkItemStatus
from automation_orchestrator.infra.db.models import WorkItemEventORM, WorkItemORM

_TERMINAL_VALUES = {item.value for item in (WorkItemStatus.success, WorkItemStatus.failed, WorkItemStatus.cancelled)}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkItemRepository:
    """工作项仓储实现，封装数据库读写与状态流转。"""
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_work_item(self, workitem_id: str) -> WorkItemORM | None:
        with self._session_factory() as db:
            return db.get(WorkItemORM, workitem_id)

    def create_work_item(
        self,
        *,
        workitem_id: str,
        activity_id: str,
        connection_id: str,
        delivery_mode: DeliveryMode,
        status: WorkItemStatus,
        raw_status: str,
        input_object_key: str,
        output_object_key: str,
    ) -> WorkItemORM:
        """在一个事务内写入工作项与提交事件。"""
        with self._session_factory.begin() as db:
            item = WorkItemORM(
                id=workitem_id,
                activity_id=activity_id,
                connection_id=connection_id,
                delivery_mode=delivery_mode.value,
                status=status.value,
                raw_status=raw_status,
                input_object_key=input_object_key,
                output_object_key=output_object_key,
            )
            db.add(item)
            db.flush()
            db.add(
                WorkItemEventORM(
                    workitem_id=workitem_id,
                    event_type="workitem.submitted",
                    status=status.value,
                    message=activity_id,
                    payload={"delivery_mode": delivery_mode.value},
                )
            )
            return item

    def record_status(
        self,
        workitem_id: str,
        status: WorkItemStatus,
        *,
        raw_status: str,
        report_url: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        """记录一次状态观测；已终态的工作项不再被覆盖，返回是否生效。"""
        with self._session_factory.begin() as db:
            item = db.get(WorkItemORM, workitem_id)
            if item is None:
                return False
            db.add(
                WorkItemEventORM(
                    workitem_id=workitem_id,
                    event_type="workitem.status.observed",
                    status=status.value,
                    message=raw_status,
                    payload=payload,
                )
            )
            if item.status in _TERMINAL_VALUES:
                return False
            item.status = status.value
            item.raw_status = raw_status
            if report_url:
                item.report_url = report_url
            item.updated_at = utcnow()
            return True

    def set_error(self, workitem_id: str, message: str) -> None:
        with self._session_factory.begin() as db:
            item = db.get(WorkItemORM, workitem_id)
            if item is None:
                return
            item.error_message = message
            item.updated_at = utcnow()

    def add_event(
        self,
        workitem_id: str,
        *,
        event_type: str,
        status: str | None = None,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        with self._session_factory.begin() as db:
            # 回调可能早于本进程的提交记录到达，未知工作项不记事件。
            if db.get(WorkItemORM, workitem_id) is None:
                return
            db.add(
                WorkItemEventORM(
                    workitem_id=workitem_id,
                    event_type=event_type,
                    status=status,
                    message=message,
                    payload=payload,
                )
            )

    def list_events(self, workitem_id: str, after_id: int = 0, limit: int = 200) -> list[WorkItemEventORM]:
        with self._session_factory() as db:
            stmt = (
                select(WorkItemEventORM)
                .where(WorkItemEventORM.workitem_id == workitem_id, WorkItemEventORM.id > after_id)
                .order_by(WorkItemEventORM.id.asc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())
