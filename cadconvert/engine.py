"""Pure functions for amount validation, option filtering and conversions."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext
from zoneinfo import ZoneInfo

from cadconvert.models import CurrencyOption, LastConversion, RateWindow
from cadconvert.valet import RateSource, RateTable

LOGGER = logging.getLogger(__name__)

AMOUNT_PATTERN = re.compile(r"^(0|[1-9][0-9]*)(\.[0-9]{1,4})?$")
FOUR_PLACES = Decimal("0.0001")
# Digits beyond the typed amount's length kept during conversion
CONVERSION_HEADROOM = 32


def is_valid_amount(text: str) -> bool:
    """No leading zeros (except "0" itself) and at most 4 fractional digits."""
    return AMOUNT_PATTERN.fullmatch(text) is not None


def format_amount(value: Decimal) -> str:
    """Round half-up to exactly 4 fractional digits."""
    return str(value.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP))


def intersect_currencies(
    options: Iterable[CurrencyOption], codes: Iterable[str]
) -> list[CurrencyOption]:
    """Keep options whose code is also in the live availability list."""
    available = set(codes)
    return [o for o in options if o.alpha_code in available]


def filter_full_coverage(
    options: Iterable[CurrencyOption], table: RateTable
) -> list[CurrencyOption]:
    """Drop currencies missing a rate on any observation date."""
    return [o for o in options if table.has_full_coverage(o.alpha_code)]


def filter_options(options: list[CurrencyOption], text: str) -> list[CurrencyOption]:
    """Case-insensitive substring match over ``"{full_name} {alpha_code}"``."""
    if not text:
        return list(options)
    needle = text.lower()
    return [
        o for o in options if needle in f"{o.full_name} {o.alpha_code}".lower()
    ]


def compute_rate_window(table: RateTable, valid_dates: list[date], now: datetime, tz: ZoneInfo) -> RateWindow:
    """Selectable date range: first observation through today (domestic time).

    The upper bound ignores the table so a future-dated row cannot extend it.
    """
    today = now.astimezone(tz).date()
    return RateWindow(
        min_date=min(table.first_date, today),
        max_date=today,
        valid_dates=valid_dates,
    )


def run_conversion(
    source: RateSource,
    text: str,
    from_code: str,
    to_code: str,
    on_date: date,
) -> tuple[str, LastConversion]:
    """Convert an amount string, returning the display value and its record.

    Arithmetic runs with enough digits for every integer place of ``text``
    plus the rate's and the 4 rounded places, so large amounts keep exact
    cents instead of overflowing the default 28-digit context.
    """
    amount = Decimal(text)
    with localcontext() as ctx:
        ctx.prec = len(text) + CONVERSION_HEADROOM
        rate, rate_date = source.rate(from_code, to_code, on_date)
        converted, converted_date = source.convert(amount, from_code, to_code, on_date)
        display = format_amount(converted)
    if converted_date != rate_date:
        LOGGER.warning(
            "Rate date %s and conversion date %s disagree for %s -> %s on %s",
            rate_date,
            converted_date,
            from_code,
            to_code,
            on_date,
        )
    return display, LastConversion(
        from_code=from_code,
        to_code=to_code,
        rate=rate,
        rate_date=converted_date,
    )
