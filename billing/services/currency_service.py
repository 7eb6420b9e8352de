"""
Exchange rates for currency conversion.

Live rates come from exchangerate-api.com (v6) when EXCHANGE_RATE_API_KEY is
configured. Any failure of the live source falls back to the static USD-based
table; conversion never fails only because the live API is down.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

import requests
from django.conf import settings
from django.core.cache import cache

from ..currency import FALLBACK_RATES, format_currency, normalize_code, quantize_for
from ..utils import to_decimal
from ..validation import ValidationError

logger = logging.getLogger(__name__)

SOURCE_LIVE = "live"
SOURCE_FALLBACK = "fallback"
RATE_PRECISION = Decimal('0.000001')


class ExchangeRateService:
    def __init__(self):
        self.api_key = getattr(settings, "EXCHANGE_RATE_API_KEY", "")
        self.base_url = getattr(settings, "EXCHANGE_RATE_API_BASE", "https://v6.exchangerate-api.com/v6")
        self.cache_seconds = getattr(settings, "EXCHANGE_RATE_CACHE_SECONDS", 3600)
        self.is_configured = bool(self.api_key)

    # ------------------------------------------------------------------
    # Live source
    # ------------------------------------------------------------------

    def _fetch(self, path: str) -> Optional[Dict[str, Any]]:
        if not self.is_configured:
            return None
        cache_key = f"exchange_rates:{path}"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            response = requests.get(f"{self.base_url}/{self.api_key}/{path}", timeout=10)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Exchange rate API unavailable for {path}, using fallback rates: {e}")
            return None

        if data.get("result") != "success":
            logger.warning(f"Exchange rate API returned {data.get('error-type', 'an error')} for {path}")
            return None

        cache.set(cache_key, data, self.cache_seconds)
        return data

    # ------------------------------------------------------------------
    # Fallback table
    # ------------------------------------------------------------------

    @staticmethod
    def fallback_rate(from_code: str, to_code: str) -> Decimal:
        missing = [code for code in (from_code, to_code) if code not in FALLBACK_RATES]
        if missing:
            raise ValidationError(
                f"No exchange rate available for {', '.join(missing)}",
                field_name='currency',
            )
        return (FALLBACK_RATES[to_code] / FALLBACK_RATES[from_code]).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def fallback_rates(base: str) -> Dict[str, Decimal]:
        if base not in FALLBACK_RATES:
            raise ValidationError(f"No exchange rates available for {base}", field_name='base')
        base_rate = FALLBACK_RATES[base]
        return {
            code: (rate / base_rate).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)
            for code, rate in FALLBACK_RATES.items()
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_rate(self, from_code: str, to_code: str) -> Tuple[Decimal, str]:
        from_code, to_code = normalize_code(from_code), normalize_code(to_code)
        if from_code == to_code:
            return Decimal('1'), (SOURCE_LIVE if self.is_configured else SOURCE_FALLBACK)

        data = self._fetch(f"pair/{from_code}/{to_code}")
        if data and data.get("conversion_rate") is not None:
            return to_decimal(data["conversion_rate"]), SOURCE_LIVE
        return self.fallback_rate(from_code, to_code), SOURCE_FALLBACK

    def get_rates(self, base: str = "USD") -> Dict[str, Any]:
        base = normalize_code(base) or "USD"
        data = self._fetch(f"latest/{base}")
        if data and data.get("conversion_rates"):
            return {
                "base": base,
                "rates": {code: to_decimal(rate) for code, rate in data["conversion_rates"].items()},
                "source": SOURCE_LIVE,
                "last_updated": data.get("time_last_update_utc"),
            }
        return {
            "base": base,
            "rates": self.fallback_rates(base),
            "source": SOURCE_FALLBACK,
            "last_updated": None,
        }

    def convert(self, amount: Any, from_code: str, to_code: str) -> Dict[str, Any]:
        amount = to_decimal(amount, default=None)
        if amount is None:
            raise ValidationError("Amount must be a number", field_name='amount')
        from_code, to_code = normalize_code(from_code), normalize_code(to_code)
        if not from_code or not to_code:
            raise ValidationError("Both source and target currencies are required", field_name='currency')

        rate, source = self.get_rate(from_code, to_code)
        converted = quantize_for(amount * rate, to_code)
        return {
            "from": from_code,
            "to": to_code,
            "amount": amount,
            "converted_amount": converted,
            "rate": rate,
            "source": source,
            "formatted": format_currency(converted, to_code),
        }


def get_exchange_rate_service() -> ExchangeRateService:
    return ExchangeRateService()
