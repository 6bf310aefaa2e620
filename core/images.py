import asyncio
import os
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict

from .errors import ValidationError


logger = structlog.get_logger(__name__)

ALLOWED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")


class ImageRef(BaseModel):
    url: str
    handle: str

    model_config = ConfigDict(frozen=True)


class ImageStore(Protocol):
    async def store(self, filename: str, content: bytes) -> ImageRef: ...

    async def delete(self, ref: ImageRef) -> None: ...


class LocalImageStore:
    """Keeps uploads on local disk under ``base_dir``."""

    def __init__(self, base_dir: str, base_url: str = "/uploads"):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/")

    async def store(self, filename: str, content: bytes) -> ImageRef:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(f"Unsupported image type {ext or '(none)'}", {"allowed": list(ALLOWED_EXTENSIONS)})
        handle = f"{uuid4().hex}{ext}"
        await asyncio.to_thread(self._write, handle, content)
        logger.info("image_stored", handle=handle, size=len(content))
        return ImageRef(url=f"{self.base_url}/{handle}", handle=handle)

    async def delete(self, ref: ImageRef) -> None:
        path = self.base_dir / ref.handle
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.info("image_deleted", handle=ref.handle)

    def _write(self, handle: str, content: bytes) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / handle).write_bytes(content)
