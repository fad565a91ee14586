"""Data models for the converter state, conversions and currency metadata."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

BASE_CURRENCY = "CAD"


class ConverterState(str, enum.Enum):
    FETCHING_CURRENCIES = "fetchingCurrencies"
    FETCHING_RATES = "fetchingRates"
    READY = "ready"
    LOADING_ERROR = "loadingError"


class ConversionDirection(enum.Enum):
    TO_BASE = "to_base"
    FROM_BASE = "from_base"


@dataclass(frozen=True, slots=True)
class CurrencyOption:
    alpha_code: str
    full_name: str

    @property
    def display(self) -> str:
        return f"{self.full_name} [{self.alpha_code}]"


@dataclass(frozen=True, slots=True)
class LastConversion:
    from_code: str
    to_code: str
    rate: Decimal
    rate_date: date


@dataclass(slots=True)
class RateWindow:
    min_date: date
    max_date: date
    valid_dates: list[date] = field(default_factory=list)

    def contains(self, day: date) -> bool:
        return self.min_date <= day <= self.max_date


@dataclass(slots=True)
class RateFreshnessState:
    last_fetch_instant: datetime | None = None
    user_skipped_refresh: bool = False
    force_prompt: bool = False


@dataclass(frozen=True, slots=True)
class FocusRequest:
    """Which amount input the view should focus, and whether to select its text."""

    field: str
    highlight: bool


# --- Currency registry ---

def _build_currency_metadata() -> list[CurrencyOption]:
    entries = [
        CurrencyOption("AUD", "Australian dollar"),
        CurrencyOption("BRL", "Brazilian real"),
        CurrencyOption("CAD", "Canadian dollar"),
        CurrencyOption("CNY", "Chinese renminbi"),
        CurrencyOption("EUR", "European euro"),
        CurrencyOption("HKD", "Hong Kong dollar"),
        CurrencyOption("INR", "Indian rupee"),
        CurrencyOption("IDR", "Indonesian rupiah"),
        CurrencyOption("JPY", "Japanese yen"),
        CurrencyOption("MYR", "Malaysian ringgit"),
        CurrencyOption("MXN", "Mexican peso"),
        CurrencyOption("NZD", "New Zealand dollar"),
        CurrencyOption("NOK", "Norwegian krone"),
        CurrencyOption("PEN", "Peruvian new sol"),
        CurrencyOption("RUB", "Russian ruble"),
        CurrencyOption("SAR", "Saudi riyal"),
        CurrencyOption("SGD", "Singapore dollar"),
        CurrencyOption("ZAR", "South African rand"),
        CurrencyOption("KRW", "South Korean won"),
        CurrencyOption("SEK", "Swedish krona"),
        CurrencyOption("CHF", "Swiss franc"),
        CurrencyOption("TWD", "Taiwanese dollar"),
        CurrencyOption("THB", "Thai baht"),
        CurrencyOption("TRY", "Turkish lira"),
        CurrencyOption("GBP", "UK pound sterling"),
        CurrencyOption("USD", "US dollar"),
        CurrencyOption("VND", "Vietnamese dong"),
    ]
    return entries


CURRENCY_METADATA = _build_currency_metadata()
CURRENCY_BY_CODE = {c.alpha_code: c for c in CURRENCY_METADATA}
