"""
Static currency table and presentation helpers.

Amounts are formatted with the currency's own precision: most currencies use
two decimal places, a handful use none (JPY, KRW, ...) and a few use three
(KWD, BHD, OMR).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union


@dataclass(frozen=True)
class Currency:
    code: str
    name: str
    symbol: str
    decimal_places: int = 2

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {
            "code": self.code,
            "name": self.name,
            "symbol": self.symbol,
            "decimal_places": self.decimal_places,
        }


CURRENCIES: Dict[str, Currency] = {
    c.code: c for c in [
        Currency("USD", "US Dollar", "$"),
        Currency("EUR", "Euro", "€"),
        Currency("GBP", "British Pound", "£"),
        Currency("JPY", "Japanese Yen", "¥", 0),
        Currency("CAD", "Canadian Dollar", "C$"),
        Currency("AUD", "Australian Dollar", "A$"),
        Currency("CHF", "Swiss Franc", "CHF "),
        Currency("CNY", "Chinese Yuan", "¥"),
        Currency("INR", "Indian Rupee", "₹"),
        Currency("MXN", "Mexican Peso", "MX$"),
        Currency("BRL", "Brazilian Real", "R$"),
        Currency("KRW", "South Korean Won", "₩", 0),
        Currency("SGD", "Singapore Dollar", "S$"),
        Currency("HKD", "Hong Kong Dollar", "HK$"),
        Currency("NOK", "Norwegian Krone", "kr "),
        Currency("SEK", "Swedish Krona", "kr "),
        Currency("DKK", "Danish Krone", "kr "),
        Currency("NZD", "New Zealand Dollar", "NZ$"),
        Currency("ZAR", "South African Rand", "R "),
        Currency("RUB", "Russian Ruble", "₽"),
        Currency("TRY", "Turkish Lira", "₺"),
        Currency("PLN", "Polish Zloty", "zł "),
        Currency("THB", "Thai Baht", "฿"),
        Currency("IDR", "Indonesian Rupiah", "Rp ", 0),
        Currency("MYR", "Malaysian Ringgit", "RM "),
        Currency("PHP", "Philippine Peso", "₱"),
        Currency("CZK", "Czech Koruna", "Kč "),
        Currency("ILS", "Israeli Shekel", "₪"),
        Currency("CLP", "Chilean Peso", "CLP$", 0),
        Currency("AED", "UAE Dirham", "AED "),
        Currency("SAR", "Saudi Riyal", "SAR "),
        Currency("TWD", "Taiwan Dollar", "NT$", 0),
        Currency("ARS", "Argentine Peso", "ARS$"),
        Currency("COP", "Colombian Peso", "COL$", 0),
        Currency("EGP", "Egyptian Pound", "E£"),
        Currency("VND", "Vietnamese Dong", "₫", 0),
        Currency("NGN", "Nigerian Naira", "₦"),
        Currency("PKR", "Pakistani Rupee", "₨"),
        Currency("BDT", "Bangladeshi Taka", "৳"),
        Currency("UAH", "Ukrainian Hryvnia", "₴"),
        Currency("HUF", "Hungarian Forint", "Ft ", 0),
        Currency("RON", "Romanian Leu", "lei "),
        Currency("BGN", "Bulgarian Lev", "лв "),
        Currency("ISK", "Icelandic Krona", "kr ", 0),
        Currency("KWD", "Kuwaiti Dinar", "KD ", 3),
        Currency("QAR", "Qatari Riyal", "QR "),
        Currency("BHD", "Bahraini Dinar", "BD ", 3),
        Currency("OMR", "Omani Rial", "OMR ", 3),
        Currency("JOD", "Jordanian Dinar", "JD "),
        Currency("KES", "Kenyan Shilling", "KSh "),
        Currency("GHS", "Ghanaian Cedi", "₵"),
    ]
}

CURRENCY_CHOICES = [(code, f"{code} - {c.name}") for code, c in CURRENCIES.items()]

# USD-based rates used whenever the live source is unavailable.
FALLBACK_RATES: Dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.50"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.53"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.24"),
    "INR": Decimal("83.12"),
    "MXN": Decimal("17.15"),
    "BRL": Decimal("4.97"),
    "KRW": Decimal("1320.50"),
    "SGD": Decimal("1.34"),
    "HKD": Decimal("7.82"),
    "NOK": Decimal("10.65"),
    "SEK": Decimal("10.42"),
    "DKK": Decimal("6.87"),
    "NZD": Decimal("1.64"),
    "ZAR": Decimal("18.65"),
}


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def get_currency(code: Optional[str]) -> Optional[Currency]:
    return CURRENCIES.get(normalize_code(code))


def is_supported(code: Optional[str]) -> bool:
    return normalize_code(code) in CURRENCIES


def list_currencies() -> List[Dict[str, Union[str, int]]]:
    return [c.to_dict() for c in CURRENCIES.values()]


def decimal_places(code: Optional[str]) -> int:
    currency = get_currency(code)
    return currency.decimal_places if currency else 2


def quantize_for(amount, code: Optional[str]) -> Decimal:
    exponent = Decimal(1).scaleb(-decimal_places(code))
    return Decimal(str(amount)).quantize(exponent, rounding=ROUND_HALF_UP)


def format_currency(amount, code: Optional[str]) -> str:
    """Render ``amount`` as e.g. ``$1,234.50``, ``¥1,235`` or ``KD 1,234.500``."""
    currency = get_currency(code)
    value = Decimal(str(amount))
    if currency is None:
        quantized = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return f"{quantized:.2f} {normalize_code(code)}"

    quantized = quantize_for(value, currency.code)
    sign = "-" if quantized < 0 else ""
    grouped = f"{abs(quantized):,.{currency.decimal_places}f}"
    return f"{sign}{currency.symbol}{grouped}"


def to_minor_units(amount, code: Optional[str]) -> int:
    return int(quantize_for(amount, code).scaleb(decimal_places(code)))


def from_minor_units(value, code: Optional[str]) -> Decimal:
    return quantize_for(Decimal(int(value)).scaleb(-decimal_places(code)), code)
