"""Tests for colorpage.api.models — Pydantic request/response models.

Tests cover:
- camelCase aliases on input and output.
- Defaults for optional fields.
- Field constraints.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from colorpage.api.models import (
    CheckoutRequest,
    CreditDeductRequest,
    HistoryEntry,
    ImagesResponse,
    ProfileCreateRequest,
)


class TestCheckoutRequest:
    def test_camel_case_input(self):
        req = CheckoutRequest.model_validate({"userId": "u1", "packageId": "pro"})
        assert req.user_id == "u1"
        assert req.package_id == "pro"

    def test_default_package(self):
        assert CheckoutRequest.model_validate({"userId": "u1"}).package_id == "starter"

    def test_user_required(self):
        with pytest.raises(ValidationError):
            CheckoutRequest.model_validate({"packageId": "pro"})
        with pytest.raises(ValidationError):
            CheckoutRequest.model_validate({"userId": ""})


class TestProfileCreateRequest:
    def test_snake_case_input_accepted(self):
        req = ProfileCreateRequest(user_id="u1", email="a@example.com")
        assert req.full_name == ""


class TestCreditDeductRequest:
    def test_default_amount(self):
        assert CreditDeductRequest().amount == 1

    def test_amount_positive(self):
        with pytest.raises(ValidationError):
            CreditDeductRequest(amount=0)


class TestImagesResponse:
    def test_serialises_with_aliases(self):
        response = ImagesResponse(
            images=[{"filename": "1-0.png", "inlineData": "abc", "output_format": "png"}],
            credit_warning="contact support",
        )
        data = response.model_dump(by_alias=True, exclude_none=True)
        assert data == {
            "images": [{"filename": "1-0.png", "inlineData": "abc", "output_format": "png"}],
            "creditWarning": "contact support",
        }


class TestHistoryEntry:
    def test_round_trip_aliases(self):
        entry = HistoryEntry(
            timestamp=1700000000000,
            images=[{"filename": "1-0.png", "fileId": "f1"}],
            storage_mode_used="hosted",
            duration_ms=1200,
            prompt="p",
            mode="edit",
            coloring_page_type="straight-copy",
        )
        data = entry.model_dump(by_alias=True)
        assert data["storageModeUsed"] == "hosted"
        assert data["durationMs"] == 1200
        assert data["images"][0]["fileId"] == "f1"
        assert data["coloringPageType"] == "straight-copy"
