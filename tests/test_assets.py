import os
from pathlib import Path

import pytest

from customer_auth.service.assets import (
    ImageStorage,
    PathTraversalError,
    UploadedImage,
    safe_join,
)
from customer_auth.service.errors import AssetOperationFailed


def test_safe_join_accepts_child_path(tmp_path: Path):
    base = tmp_path
    result = safe_join(base, "profiles/file.png")

    assert base.resolve() in result.parents


def test_safe_join_rejects_traversal(tmp_path: Path):
    with pytest.raises(PathTraversalError):
        safe_join(tmp_path, os.path.join("..", "escape.txt"))


def test_safe_join_rejects_absolute(tmp_path: Path):
    with pytest.raises(PathTraversalError):
        safe_join(tmp_path, str(Path("/tmp/absolute.txt")))


class TestImageStorage:
    async def test_upload_uses_generated_name(self, tmp_path):
        """Stored files get a fresh uuid name with the lowercased extension."""
        storage = ImageStorage(tmp_path, base_url="http://cdn.example/")

        name = await storage.upload(UploadedImage("Holiday.PNG", b"png-bytes"))

        assert name.endswith(".png")
        assert name != "Holiday.PNG"
        assert (tmp_path / "profiles" / name).read_bytes() == b"png-bytes"
        assert storage.url_for(name) == f"http://cdn.example/v1/customer/photo/{name}"

    @pytest.mark.parametrize("filename", ["anim.gif", "noext", "script.png.exe"])
    async def test_upload_rejects_other_extensions(self, tmp_path, filename):
        storage = ImageStorage(tmp_path, base_url="http://cdn.example")

        with pytest.raises(AssetOperationFailed) as exc_info:
            await storage.upload(UploadedImage(filename, b"data"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == {"operation": "upload"}
        assert not (tmp_path / "profiles").exists()

    async def test_upload_rejects_oversized(self, tmp_path):
        storage = ImageStorage(tmp_path, base_url="http://cdn.example", max_bytes=4)

        with pytest.raises(AssetOperationFailed):
            await storage.upload(UploadedImage("a.jpg", b"too-big"))

    async def test_delete_missing_is_noop(self, tmp_path):
        """Deleting a file that is already gone reports False without raising."""
        storage = ImageStorage(tmp_path, base_url="http://cdn.example")

        assert await storage.delete("missing.png") is False

    async def test_delete_removes_file(self, tmp_path):
        storage = ImageStorage(tmp_path, base_url="http://cdn.example")
        name = await storage.upload(UploadedImage("a.jpeg", b"x"))

        assert await storage.delete(name) is True
        assert storage.path_for(name) is None

    def test_path_for_rejects_traversal(self, tmp_path):
        storage = ImageStorage(tmp_path, base_url="http://cdn.example")

        with pytest.raises(PathTraversalError):
            storage.path_for("../../etc/passwd")

    def test_url_for_empty(self, tmp_path):
        storage = ImageStorage(tmp_path, base_url="http://cdn.example")

        assert storage.url_for(None) is None
