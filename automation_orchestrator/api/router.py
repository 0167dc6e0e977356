"""API 总路由配置，注册 Design Automation 与通知通道子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from automation_orchestrator.api.v1.automation import router as automation_router
from automation_orchestrator.api.v1.hub import router as hub_router
from automation_orchestrator.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(automation_router, tags=["designautomation"])
api_router.include_router(hub_router, tags=["hub"])
