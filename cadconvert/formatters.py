"""Text views of the converter: status table, currency list and JSON."""

from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cadconvert.engine import format_amount
from cadconvert.models import (
    BASE_CURRENCY,
    ConversionDirection,
    ConverterState,
    CurrencyOption,
    LastConversion,
)

if TYPE_CHECKING:
    from cadconvert.machine import Converter

PROMPT_TEXT = (
    "New rates are available\n"
    "The Bank of Canada publishes new rates every day at 16:30 ET\n"
    "Would you like to fetch the new rates?"
)
LOADING_TEXT = {
    ConverterState.FETCHING_CURRENCIES: "Fetching available currencies from the Bank of Canada...",
    ConverterState.FETCHING_RATES: "Fetching exchange rates from the Bank of Canada...",
}
ERROR_TEXT = (
    "Could not load exchange rates from the Bank of Canada. "
    "Please try again later."
)
OUTDATED_TEXT = "Newer rates have been published. Restart the session to load them."


def _render(*renderables: Any) -> str:
    buf = io.StringIO()
    rich_console = Console(file=buf, width=100, no_color=True)
    for r in renderables:
        rich_console.print(r)
    return buf.getvalue()


def format_rate_line(last: LastConversion) -> str:
    """e.g. ``1 USD = 1.3521 CAD (Bank of Canada rate for 2024-05-01)``."""
    # Rates below 1 (e.g. JPY -> CAD) need more places
    rate_str = format_amount(last.rate) if last.rate >= 1 else f"{last.rate:.6f}"
    return (
        f"1 {last.from_code} = {rate_str} {last.to_code} "
        f"(Bank of Canada rate for {last.rate_date.isoformat()})"
    )


def format_options(options: list[CurrencyOption]) -> str:
    """Format the selectable currencies as a table."""
    table = Table(box=box.SIMPLE_HEAD, pad_edge=False)
    table.add_column("Code", style="bold")
    table.add_column("Currency")
    for o in options:
        table.add_row(o.alpha_code, o.full_name)
    if not options:
        return "No matching currencies.\n"
    return _render(table)


def format_status(converter: Converter) -> str:
    """The converter as the user would see it."""
    state = converter.state
    if state in LOADING_TEXT:
        return LOADING_TEXT[state] + "\n"
    if state is ConverterState.LOADING_ERROR:
        return ERROR_TEXT + "\n"
    if state is None:
        return "Converter not started.\n"

    selection = converter.selection
    foreign_label = selection.alpha_code if selection else "Foreign"
    arrow = "→" if converter.direction is ConversionDirection.TO_BASE else "←"

    table = Table(box=box.SIMPLE_HEAD, pad_edge=False)
    table.add_column("Currency", style="bold")
    table.add_column(foreign_label, justify="right")
    table.add_column("", justify="center")
    table.add_column(BASE_CURRENCY, justify="right")
    table.add_column("Date", justify="right")
    table.add_row(
        escape(selection.display) if selection else "—",
        converter.foreign_amount.value or "—",
        arrow,
        converter.base_amount.value or "—",
        str(converter.date_field.value or "—"),
    )

    footer = ""
    if converter.last_conversion is not None:
        footer += format_rate_line(converter.last_conversion)
    for field in (converter.foreign_amount, converter.base_amount):
        if field.enabled and not field.valid:
            footer += "\nEnter an amount like 100 or 12.5 (at most 4 decimal places)."
    if converter.scheduler.outdated:
        footer += f"\n⚠ {OUTDATED_TEXT}"

    if footer:
        return _render(table, footer.lstrip("\n"))
    return _render(table)


def format_json(converter: Converter) -> str:
    """Format the current conversion as JSON."""
    last = converter.last_conversion
    data: dict[str, Any] = {
        "state": converter.state_signal.value,
        "currency": converter.selection.alpha_code if converter.selection else None,
        "direction": converter.direction.value,
        "date": converter.date_field.value.isoformat() if converter.date_field.value else None,
        "foreign_amount": converter.foreign_amount.value or None,
        "base_amount": converter.base_amount.value or None,
        "conversion": None,
    }
    if last is not None:
        data["conversion"] = {
            "from": last.from_code,
            "to": last.to_code,
            "rate": str(last.rate),
            "rate_date": last.rate_date.isoformat(),
        }
    return json.dumps(data, indent=2)
