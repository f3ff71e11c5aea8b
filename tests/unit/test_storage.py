"""Tests for colorpage.core.storage — hosted and local image persistence."""

from __future__ import annotations

import io
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from colorpage.core.config import ColorPageConfig
from colorpage.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from colorpage.core.storage import (
    HostedImageStore,
    LocalImageStore,
    build_image_store,
    mime_type_for,
    normalize_output_format,
    sniff_content_type,
    validate_file_id,
)


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "GetObject")


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def hosted_store(s3_client) -> HostedImageStore:
    return HostedImageStore(s3_client, "test-bucket")


class TestFormats:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("png", "png"), ("JPG", "jpeg"), ("jpeg", "jpeg"), ("webp", "webp"), ("gif", "png"), (None, "png")],
    )
    def test_normalize_output_format(self, raw, expected):
        assert normalize_output_format(raw) == expected

    def test_mime_type_for(self):
        assert mime_type_for("jpg") == "image/jpeg"
        assert mime_type_for("webp") == "image/webp"
        assert mime_type_for("bmp") == "image/png"


class TestValidateFileId:
    def test_accepts_opaque_id(self):
        assert validate_file_id("3f2a9c") == "3f2a9c"

    @pytest.mark.parametrize("file_id", ["../../etc/passwd", "a/b", "a\\b", "..secret"])
    def test_rejects_path_characters(self, file_id):
        with pytest.raises(ValidationError, match="Invalid filename"):
            validate_file_id(file_id)

    def test_rejects_empty(self):
        with pytest.raises(ValidationError, match="Filename is required"):
            validate_file_id("")


class TestSniffContentType:
    def test_png(self, png_bytes):
        assert sniff_content_type(png_bytes) == "image/png"

    def test_jpeg(self):
        buffer = io.BytesIO()
        Image.new("RGB", (4, 4)).save(buffer, format="JPEG")
        assert sniff_content_type(buffer.getvalue()) == "image/jpeg"

    def test_unknown_bytes_default_to_png(self):
        assert sniff_content_type(b"not an image") == "image/png"


class TestHostedImageStore:
    async def test_store_uploads_under_opaque_id(self, hosted_store, s3_client, png_bytes):
        file_id = await hosted_store.store(png_bytes, "1700000000000-0.png", "image/png")
        assert file_id and "/" not in file_id
        kwargs = s3_client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "test-bucket"
        assert kwargs["Key"] == file_id
        assert kwargs["Body"] == png_bytes
        assert kwargs["ContentType"] == "image/png"

    async def test_fetch_returns_bytes_and_type(self, hosted_store, s3_client, png_bytes):
        s3_client.get_object.return_value = {
            "Body": io.BytesIO(png_bytes),
            "ContentType": "image/webp",
        }
        stored = await hosted_store.fetch("abc123")
        assert stored.data == png_bytes
        assert stored.content_type == "image/webp"

    async def test_fetch_sniffs_missing_type(self, hosted_store, s3_client, png_bytes):
        s3_client.get_object.return_value = {"Body": io.BytesIO(png_bytes)}
        stored = await hosted_store.fetch("abc123")
        assert stored.content_type == "image/png"

    @pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
    async def test_fetch_not_found(self, hosted_store, s3_client, code):
        s3_client.get_object.side_effect = _client_error(code)
        with pytest.raises(NotFoundError):
            await hosted_store.fetch("abc123")

    async def test_fetch_other_errors_propagate(self, hosted_store, s3_client):
        s3_client.get_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(ClientError):
            await hosted_store.fetch("abc123")

    async def test_fetch_rejects_traversal_before_lookup(self, hosted_store, s3_client):
        with pytest.raises(ValidationError):
            await hosted_store.fetch("../../etc/passwd")
        s3_client.get_object.assert_not_called()


class TestLocalImageStore:
    async def test_store_keeps_nothing(self, png_bytes):
        assert await LocalImageStore().store(png_bytes, "x.png", "image/png") is None

    async def test_fetch_not_found(self):
        with pytest.raises(NotFoundError):
            await LocalImageStore().fetch("abc123")


class TestBuildImageStore:
    def test_local_mode(self, temp_dir):
        cfg = ColorPageConfig(_env_file=None, image_storage_mode="local", data_dir=temp_dir)
        assert isinstance(build_image_store(cfg), LocalImageStore)

    def test_hosted_requires_bucket(self, temp_dir):
        cfg = ColorPageConfig(
            _env_file=None, image_storage_mode="hosted", s3_bucket=None, data_dir=temp_dir
        )
        with pytest.raises(ConfigurationError, match="COLORPAGE_S3_BUCKET"):
            build_image_store(cfg)

    def test_hosted_builds_s3_client(self, test_config):
        with patch("colorpage.core.storage.boto3.client") as client_factory:
            store = build_image_store(test_config)
        assert isinstance(store, HostedImageStore)
        assert store.bucket == "test-bucket"
        client_factory.assert_called_once_with(
            "s3", region_name="us-east-1", endpoint_url=None
        )
