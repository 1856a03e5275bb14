from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from customer_auth.logging import get_logger
from customer_auth.service.errors import AssetOperationFailed

logger = get_logger(__name__)

ALLOWED_EXTENSIONS = frozenset({"jpg", "jpeg", "png"})
PROFILE_FOLDER = "profiles"


class PathTraversalError(ValueError):
    """Raised when a path escapes the intended base directory."""


def safe_join(base: Path, relative: str) -> Path:
    """Join ``relative`` to ``base`` while preventing path traversal.

    The resulting path must resolve within ``base``; absolute paths or ``..``
    segments that would escape the base directory raise ``PathTraversalError``.
    """

    base_resolved = base.resolve()
    rel_path = Path(relative)
    if rel_path.is_absolute():
        raise PathTraversalError("absolute paths not allowed")

    candidate = (base_resolved / rel_path).resolve()
    if candidate == base_resolved or base_resolved in candidate.parents:
        return candidate

    raise PathTraversalError("path traversal detected")


@dataclass
class UploadedImage:
    filename: str
    content: bytes

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else ""


class ImageStorage:
    """Profile images on the local filesystem, addressed by generated file name."""

    def __init__(self, root: str | Path, *, base_url: str, max_bytes: int = 5 * 1024 * 1024) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    async def upload(self, image: UploadedImage, subfolder: str = PROFILE_FOLDER) -> str:
        """Store ``image`` under a fresh name and return that name."""
        ext = image.extension
        if ext not in ALLOWED_EXTENSIONS:
            raise AssetOperationFailed(
                "image must be jpg, jpeg or png", operation="upload", status_code=400
            )
        if len(image.content) > self.max_bytes:
            raise AssetOperationFailed("image too large", operation="upload", status_code=400)
        name = f"{uuid.uuid4()}.{ext}"
        target = safe_join(self.root, f"{subfolder}/{name}")
        try:
            await asyncio.to_thread(self._write, target, image.content)
        except OSError as exc:
            logger.error("asset_upload_failed", name=name, error=str(exc))
            raise AssetOperationFailed("image upload failed", operation="upload") from exc
        logger.info("asset_stored", name=name, size=len(image.content))
        return name

    async def delete(self, name: str, subfolder: str = PROFILE_FOLDER) -> bool:
        """Remove a stored image. Files that are already gone are skipped."""
        path = self.path_for(name, subfolder)
        if path is None:
            return False
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise AssetOperationFailed("image delete failed", operation="delete") from exc
        logger.info("asset_deleted", name=name)
        return True

    def path_for(self, name: str, subfolder: str = PROFILE_FOLDER) -> Optional[Path]:
        path = safe_join(self.root, f"{subfolder}/{name}")
        return path if path.is_file() else None

    def url_for(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return f"{self.base_url}/v1/customer/photo/{name}"
