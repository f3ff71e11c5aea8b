"""Pydantic request and response models for the Coloring Page Studio API.

These models define the JSON schema for every JSON endpoint.  FastAPI uses
them for request validation, serialisation, and OpenAPI documentation.  The
multipart ``POST /api/images`` request is parsed by
:class:`~colorpage.api.orchestrator.ImageRequest` instead, but its response
is described here.

Wire names follow the browser client (``userId``, ``packageId``,
``fileId`` ...).  Fields are declared in snake_case with camelCase aliases
and accept either spelling on input.

Models
------
ImageResult / ImagesResponse
    Result of ``POST /api/images``.
CheckoutRequest / CheckoutResponse
    ``POST /api/stripe/checkout``.
ProfileCreateRequest / ProfileResponse
    Profile signup and lookup.
CreditDeductRequest / CreditBalanceResponse
    Post-generation credit deduction.
HistoryImage / HistoryEntry
    Generation history records.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ImageResult(_WireModel):
    """One generated image.

    Attributes:
        filename: ``{epoch_ms}-{index}.{ext}`` name derived at persistence time.
        inline_data: Base64 image data, always present so the client can fall
            back to local storage.
        output_format: ``png``, ``jpeg`` or ``webp``.
        file_id: Object-store id when the image was stored server-side.
        path: Retrieval path for ``file_id``.
    """

    filename: str
    inline_data: str = Field(..., alias="inlineData")
    output_format: str
    file_id: str | None = Field(default=None, alias="fileId")
    path: str | None = None


class ImagesResponse(_WireModel):
    images: list[ImageResult]
    usage: dict | None = None
    credits: int | None = Field(
        default=None,
        description="Remaining balance when the request was charged server-side.",
    )
    credit_warning: str | None = Field(default=None, alias="creditWarning")


class CheckoutRequest(_WireModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    package_id: str = Field(default="starter", alias="packageId")


class CheckoutResponse(_WireModel):
    url: str


class ProfileCreateRequest(_WireModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    email: str = Field(..., min_length=3)
    full_name: str = Field(default="", alias="fullName")


class ProfileResponse(_WireModel):
    user_id: str = Field(..., alias="userId")
    email: str
    full_name: str = Field(..., alias="fullName")
    credits: int
    subscription_tier: str = Field(..., alias="subscriptionTier")


class CreditDeductRequest(_WireModel):
    amount: int = Field(default=1, ge=1, description="Credits to remove.")


class CreditBalanceResponse(_WireModel):
    user_id: str = Field(..., alias="userId")
    credits: int


class HistoryImage(_WireModel):
    filename: str
    file_id: str | None = Field(default=None, alias="fileId")


class HistoryEntry(_WireModel):
    """A completed image request, as shown in the history list.

    Attributes:
        timestamp: Completion time in epoch milliseconds; identifies the entry.
        images: Filenames (and stored ids) produced by the request.
        storage_mode_used: ``hosted`` or ``local``.
        duration_ms: Wall time of the vendor call plus persistence.
        prompt: Effective prompt sent to the vendor.
        mode: ``generate`` or ``edit``.
    """

    timestamp: int
    images: list[HistoryImage]
    storage_mode_used: str | None = Field(default=None, alias="storageModeUsed")
    duration_ms: int = Field(..., alias="durationMs")
    quality: str | None = None
    background: str | None = None
    moderation: str | None = None
    output_format: str | None = None
    prompt: str
    mode: str
    coloring_page_type: str | None = Field(default=None, alias="coloringPageType")
    orientation: str | None = None
