from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from billing.currency import format_currency, from_minor_units, is_supported, list_currencies, to_minor_units
from billing.services.currency_service import SOURCE_FALLBACK, SOURCE_LIVE, ExchangeRateService
from billing.validation import ValidationError


class TestCurrencyTable:
    @pytest.mark.parametrize("amount,code,expected", [
        ("1234.5", "USD", "$1,234.50"),
        ("1234.5", "JPY", "¥1,235"),
        ("1234.5", "KWD", "KD 1,234.500"),
        ("-5", "USD", "-$5.00"),
        ("10", "XYZ", "10.00 XYZ"),
    ])
    def test_format(self, amount, code, expected):
        assert format_currency(Decimal(amount), code) == expected

    def test_minor_units_follow_precision(self):
        assert to_minor_units(Decimal("10.50"), "USD") == 1050
        assert to_minor_units(Decimal("500"), "JPY") == 500
        assert from_minor_units(1234, "KWD") == Decimal("1.234")
        assert from_minor_units(50000, "usd") == Decimal("500.00")

    def test_codes_are_case_insensitive(self):
        assert is_supported("eur")
        assert not is_supported("ZZZ")

    def test_list_currencies(self):
        codes = {c["code"] for c in list_currencies()}
        assert {"USD", "EUR", "JPY", "KWD"} <= codes


@pytest.mark.django_db
class TestExchangeRates:
    def test_fallback_without_api_key(self, settings):
        settings.EXCHANGE_RATE_API_KEY = ""
        result = ExchangeRateService().convert("100", "USD", "EUR")

        assert result["converted_amount"] == Decimal("92.00")
        assert result["source"] == SOURCE_FALLBACK
        assert result["formatted"] == "€92.00"

    def test_live_failure_falls_back(self, settings):
        settings.EXCHANGE_RATE_API_KEY = "test-key"
        with patch("billing.services.currency_service.requests.get", side_effect=requests.exceptions.Timeout()):
            result = ExchangeRateService().convert("100", "USD", "GBP")

        assert result["source"] == SOURCE_FALLBACK
        assert result["converted_amount"] == Decimal("79.00")

    def test_live_rate_is_used_and_cached(self, settings):
        settings.EXCHANGE_RATE_API_KEY = "test-key"
        response = MagicMock()
        response.json.return_value = {"result": "success", "conversion_rate": 0.9}
        with patch("billing.services.currency_service.requests.get", return_value=response) as get:
            first = ExchangeRateService().convert("100", "USD", "EUR")
            ExchangeRateService().convert("50", "USD", "EUR")

        assert first["source"] == SOURCE_LIVE
        assert first["converted_amount"] == Decimal("90.00")
        assert get.call_count == 1

    def test_error_result_falls_back(self, settings):
        settings.EXCHANGE_RATE_API_KEY = "test-key"
        response = MagicMock()
        response.json.return_value = {"result": "error", "error-type": "invalid-key"}
        with patch("billing.services.currency_service.requests.get", return_value=response):
            result = ExchangeRateService().convert("100", "USD", "EUR")
        assert result["source"] == SOURCE_FALLBACK

    def test_same_currency(self, settings):
        settings.EXCHANGE_RATE_API_KEY = ""
        result = ExchangeRateService().convert("12.34", "USD", "usd")
        assert result["rate"] == Decimal("1")
        assert result["converted_amount"] == Decimal("12.34")

    def test_no_rate_for_pair(self, settings):
        settings.EXCHANGE_RATE_API_KEY = ""
        with pytest.raises(ValidationError):
            ExchangeRateService().convert("100", "USD", "KWD")

    def test_rates_rebased(self, settings):
        settings.EXCHANGE_RATE_API_KEY = ""
        rates = ExchangeRateService().get_rates("EUR")

        assert rates["base"] == "EUR"
        assert rates["rates"]["EUR"] == Decimal("1.000000")


@pytest.mark.django_db
class TestCurrencyEndpoints:
    def test_list_is_public(self, anon_client):
        response = anon_client.get("/api/v1/currencies/")
        assert response.status_code == 200
        assert any(c["code"] == "USD" for c in response.json()["data"])

    def test_convert(self, anon_client, settings):
        settings.EXCHANGE_RATE_API_KEY = ""
        response = anon_client.get("/api/v1/currencies/convert/", {"from": "USD", "to": "JPY", "amount": "10"})

        data = response.json()["data"]
        assert data["converted_amount"] == "1495"
        assert data["source"] == "fallback"

    def test_convert_requires_amount(self, anon_client):
        assert anon_client.get("/api/v1/currencies/convert/", {"from": "USD", "to": "EUR"}).status_code == 400
