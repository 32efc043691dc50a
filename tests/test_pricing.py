"""Tests for the static pricing table."""

from decimal import Decimal

import pytest

from observ_core.pricing import ModelPricing, PricingLookup, StaticPricingTable, default_pricing


@pytest.fixture
def table() -> StaticPricingTable:
    return default_pricing()


class TestTokenPrices:
    def test_per_token_prices(self, table):
        assert table.price("gpt-4o") == Decimal("0.0000025")
        assert table.price("gpt-4o", {"unit": "output_token"}) == Decimal("0.00001")

    def test_snapshot_suffix_resolves_to_longest_prefix(self, table):
        assert table.price("gpt-4o-2024-08-06") == table.price("gpt-4o")
        assert table.price("gpt-4o-mini-2024-07-18") == table.price("gpt-4o-mini")

    def test_prefix_needs_a_dash_boundary(self, table):
        assert table.price("gpt-4omega") == Decimal(0)

    @pytest.mark.parametrize("model_id", [None, "", "no-such-model"])
    def test_unknown_model_is_free(self, table, model_id):
        assert table.price(model_id) == Decimal(0)

    def test_unknown_unit_is_free(self, table):
        assert table.price("gpt-4o", {"unit": "video_second"}) == Decimal(0)


class TestImagePrices:
    def test_exact_size_and_quality(self, table):
        assert table.price("dall-e-3", {"unit": "image", "size": "1024x1024", "quality": "hd"}) == Decimal("0.08")

    def test_quality_alias(self, table):
        assert table.price("gpt-image-1", {"unit": "image", "size": "1024x1024", "quality": "hd"}) == Decimal("0.167")
        assert table.price("dall-e-3", {"unit": "image", "size": "1024x1024", "quality": "high"}) == Decimal("0.08")

    def test_missing_quality_falls_back_to_standard(self, table):
        assert table.price("dall-e-3", {"unit": "image", "size": "1792x1024"}) == Decimal("0.08")

    def test_default_size(self, table):
        assert table.price("imagen-3.0-generate-002", {"unit": "image", "size": "2048x2048"}) == Decimal("0.04")

    def test_unknown_size_is_free(self, table):
        assert table.price("dall-e-3", {"unit": "image", "size": "64x64", "quality": "hd"}) == Decimal(0)

    def test_only_price_available(self):
        table = StaticPricingTable({"painter": ModelPricing(images={"default": {"deluxe": Decimal("1.5")}})})
        assert table.price("painter", {"unit": "image", "quality": "basic"}) == Decimal("1.5")


class TestTable:
    def test_audio_minutes(self, table):
        assert table.price("whisper-1", {"unit": "audio_minute"}) == Decimal("0.006")

    def test_with_models_returns_new_table(self, table):
        extended = table.with_models({"house-model": ModelPricing(input_per_million=Decimal("1"))})
        assert extended.price("house-model") == Decimal("0.000001")
        assert table.price("house-model") == Decimal(0)

    def test_satisfies_protocol(self, table):
        assert isinstance(table, PricingLookup)
