"""Image persistence for generated coloring pages.

Two storage modes are supported, selected once per deployment through
``COLORPAGE_IMAGE_STORAGE_MODE``:

``hosted``
    Every image is uploaded to an S3-compatible object store under an opaque
    file id.  Clients retrieve it later through ``GET /api/image/{file_id}``.
``local``
    Nothing is stored server-side.  :meth:`ImageStore.store` returns
    ``None`` and the caller hands the inline base64 data to the client, which
    keeps it in browser storage.

The boto3 client is synchronous, so uploads and downloads run in a worker
thread to keep the event loop free while a batch of images is persisted.
"""

from __future__ import annotations

import asyncio
import io
import logging
import uuid
from dataclasses import dataclass

import boto3
from botocore.exceptions import ClientError
from PIL import Image, UnidentifiedImageError

from colorpage.core.config import ColorPageConfig
from colorpage.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

HOSTED = "hosted"
LOCAL = "local"

OUTPUT_FORMATS = ("png", "jpeg", "webp")

_MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class StoredImage:
    """Bytes and content type of a stored image."""

    data: bytes
    content_type: str


def normalize_output_format(output_format: str | None) -> str:
    """Map a client-supplied format to ``png``, ``jpeg`` or ``webp``.

    ``jpg`` is accepted as ``jpeg``; anything unrecognised becomes ``png``.
    """
    normalized = str(output_format or "png").lower()
    if normalized == "jpg":
        normalized = "jpeg"
    if normalized in OUTPUT_FORMATS:
        return normalized
    return "png"


def mime_type_for(output_format: str) -> str:
    return _MIME_TYPES.get(normalize_output_format(output_format), "image/png")


def validate_file_id(file_id: str) -> str:
    """Reject file ids that could escape the image namespace.

    Raises:
        ValidationError: If the id is empty or contains ``..``, ``/`` or ``\\``.
    """
    if not file_id:
        raise ValidationError("Filename is required")
    if ".." in file_id or "/" in file_id or "\\" in file_id:
        logger.warning(f"Rejected image id with path characters: {file_id!r}")
        raise ValidationError("Invalid filename")
    return file_id


def sniff_content_type(data: bytes) -> str:
    """Detect an image's MIME type from its bytes, defaulting to PNG."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            mime = Image.MIME.get(image.format or "")
    except (UnidentifiedImageError, OSError):
        mime = None
    return mime or "image/png"


class ImageStore:
    """Base class for image persistence backends."""

    mode: str = LOCAL

    async def store(self, data: bytes, filename: str, mime_type: str) -> str | None:
        """Persist one image.

        Returns:
            An opaque file id, or ``None`` when the caller should keep the
            inline data instead.
        """
        raise NotImplementedError

    async def fetch(self, file_id: str) -> StoredImage:
        raise NotImplementedError


class LocalImageStore(ImageStore):
    """Client-side storage mode: the server keeps nothing."""

    mode = LOCAL

    async def store(self, data: bytes, filename: str, mime_type: str) -> str | None:
        return None

    async def fetch(self, file_id: str) -> StoredImage:
        raise NotFoundError("Image not found")


class HostedImageStore(ImageStore):
    """Object-store backed persistence.

    Args:
        client: A boto3 S3 client.
        bucket: Bucket that holds generated images.
    """

    mode = HOSTED

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    async def store(self, data: bytes, filename: str, mime_type: str) -> str | None:
        file_id = uuid.uuid4().hex
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=file_id,
            Body=data,
            ContentType=mime_type,
            Metadata={"filename": filename},
        )
        logger.info(f"Uploaded {filename} to bucket {self.bucket} as {file_id}")
        return file_id

    async def fetch(self, file_id: str) -> StoredImage:
        validate_file_id(file_id)
        try:
            response = await asyncio.to_thread(
                self.client.get_object, Bucket=self.bucket, Key=file_id
            )
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise NotFoundError("Image not found") from e
            raise
        data = await asyncio.to_thread(response["Body"].read)
        content_type = response.get("ContentType") or sniff_content_type(data)
        return StoredImage(data=data, content_type=content_type)


def build_image_store(cfg: ColorPageConfig) -> ImageStore:
    """Create the image store for the configured storage mode.

    Raises:
        ConfigurationError: If hosted mode is selected without a bucket.
    """
    if cfg.image_storage_mode == LOCAL:
        logger.info("Image storage mode: local (inline data only)")
        return LocalImageStore()

    bucket = cfg.require("s3_bucket")

    client = boto3.client(
        "s3",
        region_name=cfg.s3_region,
        endpoint_url=cfg.s3_endpoint_url,
    )
    logger.info(f"Image storage mode: hosted (bucket {bucket})")
    return HostedImageStore(client, bucket)
