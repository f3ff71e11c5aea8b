"""Shared pytest fixtures for Coloring Page Studio tests."""

from __future__ import annotations

import base64
import hashlib
import hmac
import io
import shutil
import tempfile
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from fastapi.testclient import TestClient
from PIL import Image

from colorpage.api.main import create_app
from colorpage.core.config import ColorPageConfig
from colorpage.core.exceptions import NotFoundError
from colorpage.core.image_client import ImageClient
from colorpage.core.ledger import CreditLedger
from colorpage.core.storage import HOSTED, ImageStore, StoredImage

WEBHOOK_SECRET = "whsec_test_secret"


class FakeImageStore(ImageStore):
    """In-memory hosted store.  Filenames listed in ``fail_on`` raise on store."""

    mode = HOSTED

    def __init__(self):
        self.objects: dict[str, StoredImage] = {}
        self.fail_on: set[str] = set()
        self.fetched: list[str] = []

    async def store(self, data: bytes, filename: str, mime_type: str) -> str | None:
        if any(filename.endswith(suffix) for suffix in self.fail_on):
            raise OSError(f"upload failed for {filename}")
        file_id = f"file{len(self.objects)}"
        self.objects[file_id] = StoredImage(data=data, content_type=mime_type)
        return file_id

    async def fetch(self, file_id: str) -> StoredImage:
        self.fetched.append(file_id)
        if file_id not in self.objects:
            raise NotFoundError("Image not found")
        return self.objects[file_id]


def make_image_response(count: int, b64: str) -> SimpleNamespace:
    """Build an object shaped like the SDK's ``ImagesResponse``."""
    return SimpleNamespace(
        data=[SimpleNamespace(b64_json=b64) for _ in range(count)],
        usage=None,
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ColorPageConfig:
    """Create a test configuration with every secret set and no .env file.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ColorPageConfig instance for testing
    """
    return ColorPageConfig(
        _env_file=None,
        openai_api_key="sk-test",
        app_password=None,
        image_storage_mode="hosted",
        s3_bucket="test-bucket",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        frontend_url="https://colorpage.test",
        data_dir=temp_dir / "data",
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A tiny valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_b64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def fake_redis():
    """Async fake Redis with its own server so tests never share state."""
    return FakeRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def ledger(fake_redis) -> CreditLedger:
    return CreditLedger(fake_redis, signup_credits=3)


@pytest.fixture
def image_store() -> FakeImageStore:
    return FakeImageStore()


@pytest.fixture
def image_client(png_b64: str) -> MagicMock:
    """Vendor client mock returning ``n`` copies of a PNG for each call."""
    client = MagicMock(spec=ImageClient)

    async def respond(*args, **params):
        return make_image_response(params.get("n", 1), png_b64)

    client.generate = AsyncMock(side_effect=respond)
    client.edit = AsyncMock(side_effect=respond)
    return client


@pytest.fixture
def sign_payload():
    """Return a function producing a valid ``Stripe-Signature`` header."""

    def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
        timestamp = int(time.time())
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return sign


@pytest.fixture
def test_app(test_config, image_client, ledger, image_store):
    return create_app(
        test_config,
        image_client=image_client,
        ledger=ledger,
        image_store=image_store,
    )


@pytest.fixture
def test_client(test_app) -> Generator[TestClient, None, None]:
    """TestClient with injected fakes; the lifespan runs for the whole test."""
    with TestClient(test_app) as client:
        yield client
