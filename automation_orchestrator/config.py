"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

import errno
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Design Automation Orchestrator"
    api_prefix: str = "/api"
    environment: str = "dev"
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET,POST,OPTIONS"
    cors_allowed_headers: str = "Authorization,Content-Type,X-Request-Id"
    cors_allow_credentials: bool = False

    database_url: str = "sqlite:///./orchestrator.db"

    data_root: Path = Field(default=Path("./data/uploads"))
    bundles_dir: Path = Field(default=Path("./wwwroot/bundles"))
    max_upload_file_size_bytes: int = 200 * 1024 * 1024

    aps_client_id: str = ""
    aps_client_secret: str | None = None
    aps_base_url: str = "https://developer.api.autodesk.com"
    aps_scopes: str = "code:all data:read data:write bucket:create bucket:read"
    da_base_url: str = "https://developer.api.autodesk.com/da/us-east/v3"
    # 为空时使用 client id 作为 nickname，与 APS 默认行为一致。
    da_nickname: str | None = None
    da_alias: str = "dev"
    request_timeout_seconds: int = 30

    storage_bucket: str | None = None
    storage_region: str = "us-east-1"
    storage_endpoint_url: str | None = None
    access_descriptor_ttl_seconds: int = 60 * 60
    download_url_ttl_seconds: int = 15 * 60

    poll_interval_seconds: float = 2.0
    poll_max_duration_seconds: int = 60 * 60
    notification_queue_size: int = 1000

    # 配置后改用 onComplete 回调推送终态，不再轮询。
    callback_base_url: str | None = None

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_workitem_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 50 * 1024 * 1024
    log_backup_count: int = 10

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_workitem_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_workitem_ids)

    def aps_scopes_list(self) -> list[str]:
        return [item for item in self.aps_scopes.split() if item]

    @property
    def nickname(self) -> str:
        """Design Automation 的拥有者前缀，用于构造限定 ID。"""
        return self.da_nickname or self.aps_client_id

    @property
    def bucket_name(self) -> str:
        """对象存储桶名；未显式配置时按 nickname 推导。"""
        if self.storage_bucket:
            return self.storage_bucket
        return f"{self.nickname.lower()}-designautomation"


def _ensure_writable_dir(path: Path, fallback_segments: tuple[str, ...]) -> Path:
    """确保目录可写；只读环境下回退到当前工作目录下的本地路径。"""
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        if exc.errno not in {errno.EACCES, errno.EPERM, errno.EROFS}:
            raise
        path = Path.cwd().joinpath(*fallback_segments).resolve()
        path.mkdir(parents=True, exist_ok=True)
    return path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时确保上传目录可写。"""
    settings = Settings()
    settings.data_root = _ensure_writable_dir(settings.data_root, ("data", "uploads"))
    # bundle 目录只读即可，这里只做绝对路径归一化。
    if not settings.bundles_dir.is_absolute():
        settings.bundles_dir = (Path.cwd() / settings.bundles_dir).resolve()
    return settings
