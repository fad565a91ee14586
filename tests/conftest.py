from __future__ import annotations

import asyncio
from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from cadconvert.config import Settings
from cadconvert.valet import FetchFailure, RateTable

TORONTO = ZoneInfo("America/Toronto")

# Monday; the latest observation is the previous Friday
NOW = datetime(2024, 5, 6, 10, 0, tzinfo=TORONTO)

OBSERVATIONS = {
    "observations": [
        {"d": "2024-04-29", "FXUSDCAD": {"v": "1.3700"}, "FXEURCAD": {"v": "1.4650"},
         "FXGBPCAD": {"v": "1.7110"}, "FXJPYCAD": {"v": "0.008790"}},
        {"d": "2024-04-30", "FXUSDCAD": {"v": "1.3650"}, "FXEURCAD": {"v": "1.4620"},
         "FXGBPCAD": {"v": "1.7080"}, "FXJPYCAD": {"v": "0.008740"}},
        {"d": "2024-05-01", "FXUSDCAD": {"v": "1.3600"}, "FXEURCAD": {"v": "1.4600"},
         "FXJPYCAD": {"v": "0.008700"}},
        {"d": "2024-05-02", "FXUSDCAD": {"v": "1.3680"}, "FXEURCAD": {"v": "1.4680"},
         "FXGBPCAD": {"v": "1.7150"}, "FXJPYCAD": {"v": "0.008860"}},
        {"d": "2024-05-03", "FXUSDCAD": {"v": "1.3675"}, "FXEURCAD": {"v": "1.4700"},
         "FXGBPCAD": {"v": "1.7160"}, "FXJPYCAD": {"v": "0.008930"}},
    ]
}

LIVE_CODES = {"CAD", "USD", "EUR", "GBP", "JPY"}


class FakeSource:
    """In-memory RateSource; ``gate`` holds fetches until it is set."""

    def __init__(
        self,
        codes: set[str] | None = None,
        payload: dict | None = None,
        fail_currencies: bool = False,
        fail_rates: bool = False,
    ) -> None:
        self.codes = set(codes if codes is not None else LIVE_CODES)
        self.table = RateTable.from_valet(payload or OBSERVATIONS)
        self.fail_currencies = fail_currencies
        self.fail_rates = fail_rates
        self.gate: asyncio.Event | None = None
        self.calls: Counter[str] = Counter()

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def list_currencies(self) -> set[str]:
        self.calls["list_currencies"] += 1
        await self._wait()
        if self.fail_currencies:
            raise FetchFailure("currency listing unavailable")
        return set(self.codes)

    async def list_observations(self) -> RateTable:
        self.calls["list_observations"] += 1
        await self._wait()
        if self.fail_rates:
            raise FetchFailure("observations unavailable")
        return self.table

    def rate(self, from_code: str, to_code: str, on_date: date) -> tuple[Decimal, date]:
        self.calls["rate"] += 1
        return self.table.rate(from_code, to_code, on_date)

    def convert(
        self, amount: Decimal, from_code: str, to_code: str, on_date: date
    ) -> tuple[Decimal, date]:
        self.calls["convert"] += 1
        return self.table.convert(amount, from_code, to_code, on_date)

    def valid_dates(self) -> list[date]:
        return self.table.dates


class ScriptedPrompt:
    """Answers the freshness prompt from a fixed list, last answer repeating."""

    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers) or [False]
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def clock():
    return lambda: NOW
