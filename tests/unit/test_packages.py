"""Tests for colorpage.core.packages — the credit package catalog."""

from __future__ import annotations

from colorpage.core.packages import (
    CREDIT_PACKAGES,
    DEFAULT_PACKAGE_ID,
    get_package_by_id,
    price_per_credit,
)


class TestCatalog:
    def test_package_ids(self):
        assert [p.id for p in CREDIT_PACKAGES] == ["starter", "value", "pro", "mega"]

    def test_default_package_exists(self):
        assert get_package_by_id(DEFAULT_PACKAGE_ID).credits == 10

    def test_single_popular_package(self):
        assert [p.id for p in CREDIT_PACKAGES if p.popular] == ["value"]

    def test_unknown_package(self):
        assert get_package_by_id("gold") is None

    def test_to_dict_includes_price_per_credit(self):
        data = get_package_by_id("mega").to_dict()
        assert data["price"] == 6000
        assert data["savings"] == 33
        assert data["price_per_credit"] == "0.60"


class TestPricePerCredit:
    def test_rounding(self):
        assert price_per_credit(900, 10) == "0.90"
        assert price_per_credit(2000, 25) == "0.80"
        assert price_per_credit(3500, 50) == "0.70"
