from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol
from threading import Lock
import logging
import os
import uuid

from ..domain.errors import ValidationError


logger = logging.getLogger("studio.uploads")

_ALLOWED_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}


class ImageStore(Protocol):
    max_bytes: int

    def save_image(self, filename: str, data: bytes) -> str: ...

    def delete_image(self, ref: str) -> None: ...


@dataclass
class UploadConfig:
    directory: Path
    url_prefix: str = "/uploads"
    max_bytes: int = 5 * 1024 * 1024

    @staticmethod
    def from_env() -> "UploadConfig":
        directory = Path(os.getenv("STUDIO_UPLOAD_DIR", "uploads"))
        max_bytes = int(os.getenv("STUDIO_MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))
        return UploadConfig(directory=directory, max_bytes=max_bytes)


class LocalImageStore:
    """Writes uploads to a local directory served under ``/uploads``.

    Only the returned reference is persisted with the session; the bytes stay here.
    """

    def __init__(self, cfg: Optional[UploadConfig] = None) -> None:
        self._cfg = cfg or UploadConfig.from_env()

    @property
    def directory(self) -> Path:
        return self._cfg.directory

    @property
    def max_bytes(self) -> int:
        return self._cfg.max_bytes

    def save_image(self, filename: str, data: bytes) -> str:
        if not data:
            raise ValidationError("Uploaded image is empty")
        if len(data) > self._cfg.max_bytes:
            raise ValidationError("Uploaded image is too large")
        safe_name = (filename or "upload").strip().replace("/", "_").replace("\\", "_")
        suffix = Path(safe_name).suffix.lower()
        if suffix not in _ALLOWED_SUFFIXES:
            raise ValidationError("Unsupported image type")
        key = f"{uuid.uuid4().hex}{suffix}"
        self._cfg.directory.mkdir(parents=True, exist_ok=True)
        (self._cfg.directory / key).write_bytes(data)
        logger.info("Stored upload %s as %s (%d bytes)", safe_name, key, len(data))
        return f"{self._cfg.url_prefix}/{key}"

    def delete_image(self, ref: str) -> None:
        key = ref.rsplit("/", 1)[-1]
        if not key or key in (".", ".."):
            return
        path = self._cfg.directory / key
        if path.exists():
            path.unlink()
            logger.info("Removed upload %s", key)


_image_store: ImageStore | None = None
_image_store_lock = Lock()


def get_image_store() -> ImageStore:
    global _image_store
    if _image_store is None:
        with _image_store_lock:
            if _image_store is None:
                _image_store = LocalImageStore()
    return _image_store
