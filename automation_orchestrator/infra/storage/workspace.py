"""工作区管理器：保存上传文件、定位本地 bundle 包并清理暂存文件。"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

FILENAME_SAFE_RE = re.compile(r"[^a-zA-Z0-9._-]+")


def sha256_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass(slots=True)
class StoredFile:
    """已落盘上传文件描述。"""
    filename: str
    absolute_path: Path
    size_bytes: int
    sha256: str


class WorkspaceManager:
    """本地文件管理器，负责上传暂存目录与 bundle 目录。"""
    def __init__(self, data_root: Path, bundles_dir: Path, max_upload_file_size_bytes: int) -> None:
        self._data_root = data_root
        self._bundles_dir = bundles_dir
        self._max_upload_file_size_bytes = max_upload_file_size_bytes

    def sanitize_filename(self, filename: str) -> str:
        """清洗上传文件名，移除潜在非法字符。"""
        clean_name = Path(filename).name.strip()
        # 仅保留白名单字符，防止路径穿越。
        clean_name = FILENAME_SAFE_RE.sub("_", clean_name)
        return clean_name or "upload.bin"

    def store_upload(self, filename: str, content: bytes) -> StoredFile:
        """把上传内容写入独立子目录，避免并发请求同名覆盖。"""
        if len(content) == 0:
            raise ValueError(f"empty upload is not allowed: {filename}")
        if len(content) > self._max_upload_file_size_bytes:
            raise ValueError(f"file exceeds size limit: {filename}")
        safe_name = self.sanitize_filename(filename)
        target_dir = self._data_root / uuid4().hex
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / safe_name
        target.write_bytes(content)
        return StoredFile(
            filename=safe_name,
            absolute_path=target,
            size_bytes=len(content),
            sha256=sha256_bytes(content),
        )

    def discard(self, path: Path) -> None:
        """删除暂存文件及其空的上级目录。"""
        path.unlink(missing_ok=True)
        parent = path.parent
        if parent != self._data_root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()

    def list_local_bundles(self) -> list[str]:
        """列出 bundle 目录下可用的 zip 包名（不含扩展名）。"""
        if not self._bundles_dir.is_dir():
            return []
        return sorted(path.stem for path in self._bundles_dir.glob("*.zip") if path.is_file())

    def bundle_package_path(self, zip_file_name: str) -> Path:
        """按包名定位 bundle zip，拒绝目录穿越。"""
        safe_name = self.sanitize_filename(zip_file_name)
        if safe_name != zip_file_name:
            raise ValueError(f"invalid bundle name: {zip_file_name}")
        return self._bundles_dir / f"{safe_name}.zip"
