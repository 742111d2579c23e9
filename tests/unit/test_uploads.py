from unittest.mock import patch

import pytest

from core.exceptions import InvalidArgumentError, UploadError
from core.validation import InputValidator, UploadValidator
from providers.blob_store import LocalBlobStore
from services.upload_service import UploadService


class TestUploadValidator:
    @pytest.mark.parametrize(
        "filename,content_type,expected",
        [
            ("photo.png", "image/png", ".png"),
            ("photo.JPG", "image/jpeg", ".jpg"),
            ("photo.jpeg", "image/jpeg", ".jpg"),
        ],
    )
    def test_accepts_images(self, filename, content_type, expected):
        assert UploadValidator.validate_image(filename, content_type, 100) == expected

    @pytest.mark.parametrize(
        "filename,content_type",
        [
            ("doc.pdf", "application/pdf"),
            ("photo.png", "application/pdf"),
            ("script.png.exe", "image/png"),
            (None, "image/png"),
        ],
    )
    def test_rejects_other_types(self, filename, content_type):
        with pytest.raises(UploadError):
            UploadValidator.validate_image(filename, content_type, 100)

    def test_rejects_oversized_and_empty(self):
        with pytest.raises(UploadError) as exc_info:
            UploadValidator.validate_image("big.png", "image/png", 11, max_bytes=10)
        assert exc_info.value.error_code == "INVALID_UPLOAD"

        with pytest.raises(UploadError):
            UploadValidator.validate_image("empty.png", "image/png", 0)


class TestInputValidator:
    def test_identifier(self):
        assert InputValidator.is_identifier("0" * 32)
        assert not InputValidator.is_identifier("0" * 31)
        assert not InputValidator.is_identifier("G" * 32)
        assert not InputValidator.is_identifier(None)

    @pytest.mark.parametrize(
        "url", ["/Uploads/a.png", "https://cdn.example.com/a.png", "http://example.com/x"]
    )
    def test_valid_urls(self, url):
        assert InputValidator.validate_url(url) == url

    @pytest.mark.parametrize("url", ["", "javascript:alert(1)", "example.com/a.png"])
    def test_invalid_urls(self, url):
        with pytest.raises(InvalidArgumentError):
            InputValidator.validate_url(url)


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_put_writes_file(self, tmp_path):
        store = LocalBlobStore(root_dir=str(tmp_path / "blobs"), base_url="/Uploads/")

        url = await store.put(b"data", ".png", prefix="avatar")

        assert url.startswith("/Uploads/avatar-")
        assert url.endswith(".png")
        stored = tmp_path / "blobs" / url.rsplit("/", 1)[1]
        assert stored.read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_names_are_unique(self, tmp_path):
        store = LocalBlobStore(root_dir=str(tmp_path))
        urls = {await store.put(b"x", ".jpg") for _ in range(5)}
        assert len(urls) == 5

    @pytest.mark.asyncio
    async def test_write_failure(self, tmp_path):
        store = LocalBlobStore(root_dir=str(tmp_path))
        with patch.object(store, "_write", side_effect=OSError("disk full")):
            with pytest.raises(UploadError):
                await store.put(b"x", ".png")


class TestUploadService:
    @pytest.mark.asyncio
    async def test_store_image(self, upload_dir, png_bytes):
        service = UploadService(LocalBlobStore())

        url = await service.store_image(png_bytes, "me.png", "image/png", prefix="post")

        assert url.startswith("/Uploads/post-")
        assert len(list(upload_dir.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_invalid_image_not_stored(self, upload_dir):
        service = UploadService(LocalBlobStore())

        with pytest.raises(UploadError):
            await service.store_image(b"%PDF", "doc.pdf", "application/pdf")

        assert not upload_dir.exists()
