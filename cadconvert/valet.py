"""Async exchange-rate source backed by the Bank of Canada Valet API.

The Bank publishes one observation per business day for the FX_RATES_DAILY
group. Each observation carries a date ("d") and one entry per series, keyed
``FX{code}CAD`` and holding the CAD value of one unit of the foreign currency.
No API key required. Base URL: https://www.bankofcanada.ca/valet
"""

from __future__ import annotations

import bisect
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from cadconvert.config import Settings
from cadconvert.models import BASE_CURRENCY

LOGGER = logging.getLogger(__name__)

RATE_GROUP = "FX_RATES_DAILY"
SERIES_PATTERN = re.compile(r"^FX([A-Z]{3})CAD$")


class FetchFailure(Exception):
    """Currency codes or rate observations could not be loaded."""


def series_key(code: str) -> str:
    return f"FX{code}{BASE_CURRENCY}"


class RateTable:
    """Daily observations ordered by date, with nearest-prior-date lookup."""

    def __init__(self, rows: list[tuple[date, dict[str, Decimal]]]) -> None:
        if not rows:
            raise ValueError("Rate table needs at least one observation")
        self._rows = sorted(rows, key=lambda row: row[0])
        self._dates = [d for d, _ in self._rows]

    @classmethod
    def from_valet(cls, payload: dict[str, Any]) -> RateTable:
        rows: list[tuple[date, dict[str, Decimal]]] = []
        for obs in payload["observations"]:
            day = date.fromisoformat(obs["d"])
            values: dict[str, Decimal] = {}
            for key, cell in obs.items():
                match = SERIES_PATTERN.match(key)
                if match is None or not isinstance(cell, dict):
                    continue
                raw = cell.get("v")
                if raw in (None, ""):
                    continue
                values[match.group(1)] = Decimal(str(raw))
            rows.append((day, values))
        return cls(rows)

    @property
    def dates(self) -> list[date]:
        return list(self._dates)

    @property
    def first_date(self) -> date:
        return self._dates[0]

    @property
    def last_date(self) -> date:
        return self._dates[-1]

    def has_full_coverage(self, code: str) -> bool:
        """True if every observation has a value for ``code``."""
        return all(code in values for _, values in self._rows)

    def _row_for(self, on_date: date) -> tuple[date, dict[str, Decimal]]:
        # Nearest published date on or before the request; the first
        # observation when the request predates the table.
        idx = bisect.bisect_right(self._dates, on_date) - 1
        return self._rows[max(idx, 0)]

    def rate(self, from_code: str, to_code: str, on_date: date) -> tuple[Decimal, date]:
        """Units of ``to_code`` per one unit of ``from_code`` on the nearest prior date."""
        actual, values = self._row_for(on_date)
        if from_code == to_code:
            return Decimal(1), actual
        if to_code == BASE_CURRENCY:
            return _lookup(values, from_code, actual), actual
        if from_code == BASE_CURRENCY:
            return Decimal(1) / _lookup(values, to_code, actual), actual
        raise ValueError(
            f"Only conversions to or from {BASE_CURRENCY} are supported, "
            f"not {from_code} -> {to_code}"
        )

    def convert(
        self, amount: Decimal, from_code: str, to_code: str, on_date: date
    ) -> tuple[Decimal, date]:
        rate, actual = self.rate(from_code, to_code, on_date)
        return amount * rate, actual


def _lookup(values: dict[str, Decimal], code: str, on_date: date) -> Decimal:
    try:
        return values[code]
    except KeyError:
        raise LookupError(f"No {code} rate published for {on_date}") from None


class RateSource(Protocol):
    async def list_currencies(self) -> set[str]: ...

    async def list_observations(self) -> RateTable: ...

    def convert(
        self, amount: Decimal, from_code: str, to_code: str, on_date: date
    ) -> tuple[Decimal, date]: ...

    def rate(self, from_code: str, to_code: str, on_date: date) -> tuple[Decimal, date]: ...

    def valid_dates(self) -> list[date]: ...


class ValetRateSource:
    """RateSource that loads FX_RATES_DAILY through an ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings
        self.table: RateTable | None = None

    async def _get_json(self, url: str, **params: str) -> dict[str, Any]:
        try:
            resp = await self.client.get(url, params=params or None)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise FetchFailure(f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise FetchFailure(f"Response from {url} is not JSON") from exc

    async def list_currencies(self) -> set[str]:
        """Fetch the codes of every currency in the daily rate group."""
        url = f"{self.settings.valet_url}/groups/{RATE_GROUP}/json"
        data = await self._get_json(url)
        try:
            series = data["groupDetails"]["groupSeries"]
        except (KeyError, TypeError) as exc:
            raise FetchFailure(f"Unexpected group listing from {url}") from exc

        codes = {m.group(1) for m in map(SERIES_PATTERN.match, series) if m}
        codes.add(BASE_CURRENCY)
        LOGGER.debug("Valet lists %d currencies", len(codes))
        return codes

    async def list_observations(self) -> RateTable:
        """Fetch all daily observations since the configured start date."""
        url = f"{self.settings.valet_url}/observations/group/{RATE_GROUP}/json"
        data = await self._get_json(url, start_date=self.settings.start_date.isoformat())
        try:
            table = RateTable.from_valet(data)
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise FetchFailure(f"Unexpected observations from {url}: {exc}") from exc

        LOGGER.debug(
            "Loaded %d observations (%s to %s)",
            len(table.dates),
            table.first_date,
            table.last_date,
        )
        self.table = table
        return table

    def _loaded(self) -> RateTable:
        if self.table is None:
            raise RuntimeError("Rates have not been loaded yet")
        return self.table

    def rate(self, from_code: str, to_code: str, on_date: date) -> tuple[Decimal, date]:
        return self._loaded().rate(from_code, to_code, on_date)

    def convert(
        self, amount: Decimal, from_code: str, to_code: str, on_date: date
    ) -> tuple[Decimal, date]:
        return self._loaded().convert(amount, from_code, to_code, on_date)

    def valid_dates(self) -> list[date]:
        return self._loaded().dates
