"""Image request orchestration for ``POST /api/images``.

This module turns one multipart form submission into a vendor call and a
list of persisted images.  It is kept apart from :mod:`colorpage.api.main`
so the request flow can be tested without HTTP.

Request flow
------------
1. :func:`verify_password_hash` — shared-password gate (only when
   ``COLORPAGE_APP_PASSWORD`` is set).
2. :meth:`ImageOrchestrator.run` dispatches on ``mode``:

   ``generate``
       Prompt and generation parameters are forwarded as-is
       (:func:`build_generate_params`).
   ``edit``
       Requires at least one ``image_*`` file.  When ``coloringPageType``
       is present the client prompt is replaced by the templated coloring
       page prompt, quality is fixed to ``medium``, ``n`` to 1 and the size
       follows the orientation.  Otherwise the edit is a generic passthrough
       (:func:`build_edit_params`).

3. Every returned image is persisted concurrently.  A failure to persist one
   image only downgrades that image to inline data.

Credit handling around the run (pre-check, post-generation deduction) lives
in :func:`ensure_credits` and :func:`deduct_after_generation`.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field

from starlette.datastructures import UploadFile

from colorpage.core.exceptions import (
    AuthorizationError,
    ColorPageError,
    ImageGenerationError,
    InsufficientCreditsError,
    ValidationError,
)
from colorpage.core.image_client import ImageClient, ImageFile
from colorpage.core.ledger import CreditLedger
from colorpage.core.prompt_builder import (
    MAX_PHOTOS,
    PLAIN,
    generate_prompt,
    size_for_orientation,
)
from colorpage.core.storage import (
    ImageStore,
    mime_type_for,
    normalize_output_format,
    sniff_content_type,
)

logger = logging.getLogger(__name__)

GENERATE = "generate"
EDIT = "edit"

MIN_IMAGES = 1
MAX_IMAGES = 10

COLORING_PAGE_QUALITY = "medium"

DEDUCTION_FAILED_MESSAGE = (
    "Generation successful but failed to deduct {amount} credit(s). Please contact support."
)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def verify_password_hash(app_password: str | None, password_hash: str | None) -> None:
    """Check the client's password hash against the shared password.

    Args:
        app_password: Configured shared password; no check when empty.
        password_hash: SHA-256 hex digest supplied by the client.

    Raises:
        AuthorizationError: If the hash is missing or does not match.
    """
    if not app_password:
        return
    if not password_hash:
        logger.error("Missing password hash.")
        raise AuthorizationError("Unauthorized: Missing password hash.")
    if not hmac.compare_digest(password_hash.strip().lower(), sha256_hex(app_password)):
        logger.error("Invalid password hash.")
        raise AuthorizationError("Unauthorized: Invalid password.")


def clamp_image_count(raw: str | int | None) -> int:
    """Parse an image count and clamp it to ``[1, 10]``.

    Missing, unparsable and zero values become 1.
    """
    try:
        count = int(raw) if raw not in (None, "") else 1
    except (TypeError, ValueError):
        count = 1
    count = count or 1
    return max(MIN_IMAGES, min(count, MAX_IMAGES))


def parse_labels(raw: str | None) -> list[str]:
    """Decode the JSON ``individualNames`` field; bad input yields ``[]``."""
    if not raw:
        return []
    try:
        labels = json.loads(raw)
    except ValueError as e:
        logger.error(f"Error parsing individual names: {e}")
        return []
    if not isinstance(labels, list):
        return []
    return ["" if label is None else str(label) for label in labels]


def fit_labels(labels: list[str], photo_count: int) -> list[str]:
    """Pad or truncate label slots so there is exactly one per photo."""
    return (labels + [""] * photo_count)[:photo_count]


def build_generate_params(fields: dict[str, str]) -> dict:
    """Vendor parameters for ``generate`` mode.

    Compression is only sent for ``jpeg``/``webp`` output and only when it
    is an integer in ``[0, 100]``.
    """
    output_format = normalize_output_format(fields.get("output_format"))
    params = {
        "n": clamp_image_count(fields.get("n")),
        "size": fields.get("size") or "1024x1024",
        "quality": fields.get("quality") or "medium",
        "output_format": output_format,
        "background": fields.get("background") or "auto",
        "moderation": fields.get("moderation") or "auto",
    }
    compression = fields.get("output_compression")
    if output_format in ("jpeg", "webp") and compression:
        try:
            value = int(compression)
        except ValueError:
            value = None
        if value is not None and 0 <= value <= 100:
            params["output_compression"] = value
    return params


def build_edit_params(prompt: str, fields: dict[str, str], photo_count: int) -> tuple[str, dict]:
    """Effective prompt and vendor parameters for ``edit`` mode.

    Returns:
        ``(prompt, params)`` where ``params`` omits ``size``/``quality`` when
        the client asked for ``auto``.

    Raises:
        ValidationError: If a coloring page has more photos than its type
            accepts.
    """
    page_type = fields.get("coloringPageType")
    if not page_type:
        params: dict = {"n": clamp_image_count(fields.get("n"))}
        size = fields.get("size") or "auto"
        quality = fields.get("quality") or "high"
        if size != "auto":
            params["size"] = size
        if quality != "auto":
            params["quality"] = quality
        return prompt, params

    max_photos = MAX_PHOTOS.get(page_type)
    if max_photos is not None and photo_count > max_photos:
        raise ValidationError(f"A {page_type} page accepts at most {max_photos} photo(s).")

    labels = fit_labels(parse_labels(fields.get("individualNames")), photo_count)
    background = fields.get("background") or PLAIN
    orientation = fields.get("orientation")
    coloring_prompt = generate_prompt(
        page_type,
        fields.get("nameOrMessage") or "",
        labels,
        background,
        fields.get("sceneDescription") or None,
    )
    if fields.get("setPiece"):
        logger.info(f"Set piece '{fields['setPiece']}' requested (not used by templates)")
    logger.info(
        f"Coloring page request: type={page_type}, orientation={orientation}, "
        f"background={background}, photos={photo_count}"
    )
    logger.debug(f"Generated prompt: {coloring_prompt}")
    return coloring_prompt, {
        "n": 1,
        "quality": COLORING_PAGE_QUALITY,
        "size": size_for_orientation(orientation),
    }


@dataclass
class ImageRequest:
    """One parsed ``POST /api/images`` submission.

    Attributes:
        mode: ``generate`` or ``edit``.
        prompt: Client prompt (ignored for coloring pages).
        fields: Every other text field, by name.
        photos: ``image_*`` uploads as SDK file tuples, in form order.
        mask: Optional ``mask`` upload.
    """

    mode: str | None
    prompt: str | None
    fields: dict[str, str] = field(default_factory=dict)
    photos: list[ImageFile] = field(default_factory=list)
    mask: ImageFile | None = None

    @property
    def password_hash(self) -> str | None:
        return self.fields.get("passwordHash")

    @property
    def user_id(self) -> str | None:
        return self.fields.get("userId") or None

    @property
    def is_coloring_page(self) -> bool:
        return bool(self.fields.get("coloringPageType"))

    @classmethod
    async def from_form(cls, form) -> ImageRequest:
        """Build a request from Starlette form data, reading uploads into memory."""
        fields: dict[str, str] = {}
        photos: list[ImageFile] = []
        mask: ImageFile | None = None
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                data = await value.read()
                image_file = (
                    value.filename or key,
                    data,
                    value.content_type or sniff_content_type(data),
                )
                if key.startswith("image_"):
                    photos.append(image_file)
                elif key == "mask":
                    mask = image_file
            else:
                fields[key] = value
        return cls(
            mode=fields.pop("mode", None),
            prompt=fields.pop("prompt", None),
            fields=fields,
            photos=photos,
            mask=mask,
        )


@dataclass
class ImagesResult:
    """Outcome of an orchestrated image request."""

    images: list[dict]
    usage: dict | None
    prompt: str
    mode: str
    output_format: str
    params: dict


class ImageOrchestrator:
    """Run image requests against the vendor and persist the results.

    Args:
        image_client: Vendor client.
        image_store: Persistence backend for the returned images.
    """

    def __init__(self, image_client: ImageClient, image_store: ImageStore):
        self.image_client = image_client
        self.image_store = image_store

    async def run(self, req: ImageRequest) -> ImagesResult:
        """Execute one request.

        Raises:
            ValidationError: Missing mode/prompt, unknown mode, or no photo in
                edit mode.
            UpstreamError: The vendor call failed.
            ImageGenerationError: The vendor returned no image data.
        """
        logger.info(f"Mode: {req.mode}, Prompt: {(req.prompt or 'N/A')[:50]}")

        if not req.mode or not (req.prompt or req.is_coloring_page):
            raise ValidationError("Missing required parameters: mode and prompt")

        if req.mode == GENERATE:
            params = build_generate_params(req.fields)
            prompt = req.prompt or ""
            result = await self.image_client.generate(prompt=prompt, **params)
            output_format = params["output_format"]
        elif req.mode == EDIT:
            if not req.photos:
                raise ValidationError("No image file provided for editing.")
            prompt, params = build_edit_params(req.prompt or "", req.fields, len(req.photos))
            result = await self.image_client.edit(req.photos, prompt, mask=req.mask, **params)
            output_format = normalize_output_format(req.fields.get("output_format"))
        else:
            raise ValidationError("Invalid mode specified")

        images = await self.persist_images(getattr(result, "data", None), output_format)

        usage = getattr(result, "usage", None)
        if hasattr(usage, "model_dump"):
            usage = usage.model_dump()

        logger.info(f"All images processed. Mode: {self.image_store.mode}")
        return ImagesResult(
            images=images,
            usage=usage,
            prompt=prompt,
            mode=req.mode,
            output_format=output_format,
            params=params,
        )

    async def persist_images(self, data, output_format: str) -> list[dict]:
        """Persist every vendor image concurrently, preserving order.

        Raises:
            ImageGenerationError: If ``data`` is empty or an item has no
                base64 payload.
        """
        if not data:
            logger.error("Invalid or empty data received from image API")
            raise ImageGenerationError("Failed to retrieve image data from API.")

        payloads: list[str] = []
        for index, item in enumerate(data):
            b64 = getattr(item, "b64_json", None)
            if not b64:
                logger.error(f"Image data {index} is missing b64_json.")
                raise ImageGenerationError(f"Image data at index {index} is missing base64 data.")
            payloads.append(b64)

        return list(
            await asyncio.gather(
                *(
                    self._persist_one(index, b64, output_format)
                    for index, b64 in enumerate(payloads)
                )
            )
        )

    async def _persist_one(self, index: int, b64: str, output_format: str) -> dict:
        filename = f"{int(time.time() * 1000)}-{index}.{output_format}"
        entry = {"filename": filename, "inlineData": b64, "output_format": output_format}
        try:
            file_id = await self.image_store.store(
                base64.b64decode(b64), filename, mime_type_for(output_format)
            )
        except Exception as e:
            # Persisting is per image; the inline data is still returned.
            logger.error(f"Error storing image {filename}, falling back to inline data: {e}")
            file_id = None
        if file_id:
            entry["fileId"] = file_id
            entry["path"] = f"/api/image/{file_id}"
        return entry


async def ensure_credits(ledger: CreditLedger, user_id: str, required: int) -> int:
    """Verify the balance covers ``required`` before generating.

    Returns:
        The current balance.

    Raises:
        InsufficientCreditsError: If the balance is too low.
    """
    available = await ledger.get_credits(user_id)
    if available < required:
        raise InsufficientCreditsError(required=required, available=available)
    return available


async def deduct_after_generation(
    ledger: CreditLedger, user_id: str, amount: int
) -> tuple[int | None, str | None]:
    """Charge for a delivered request.

    A failed deduction never withdraws the images; it is reported back as a
    support-contact warning instead.

    Returns:
        ``(remaining_balance, None)`` on success or ``(None, warning)``.
    """
    try:
        remaining = await ledger.deduct_credits(user_id, amount)
    except ColorPageError as e:
        logger.error(f"Credit deduction failed for {user_id} after generation: {e.message}")
        return None, DEDUCTION_FAILED_MESSAGE.format(amount=amount)
    return remaining, None
