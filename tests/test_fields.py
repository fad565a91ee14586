"""Tests for observable fields and listener bookkeeping."""

from __future__ import annotations

import asyncio

import pytest

from cadconvert.fields import AmountField, Field, ReactorSet, StateSignal


class TestField:
    def test_set_value_notifies(self) -> None:
        field = Field("f", "")
        seen: list[str] = []
        field.subscribe(seen.append)
        field.set_value("a")
        assert seen == ["a"]

    def test_emit_false_is_silent(self) -> None:
        field = Field("f", "")
        seen: list[str] = []
        field.subscribe(seen.append)
        field.set_value("a", emit=False)
        assert seen == []
        assert field.value == "a"

    def test_unsubscribe_idempotent(self) -> None:
        field = Field("f", "")
        seen: list[str] = []
        sub = field.subscribe(seen.append)
        sub.unsubscribe()
        sub.unsubscribe()
        field.set_value("a")
        assert seen == []
        assert field.listeners == []

    def test_unsubscribe_during_emit_skips_later_listener(self) -> None:
        field = Field("f", "")
        seen: list[str] = []
        second = None

        def first(value: str) -> None:
            seen.append("first")
            second.unsubscribe()

        field.subscribe(first)
        second = field.subscribe(lambda v: seen.append("second"))
        field.set_value("x")
        assert seen == ["first"]

    def test_reset_does_not_notify(self) -> None:
        field = Field("f", "x")
        seen: list[str] = []
        field.subscribe(seen.append)
        field.reset("", enabled=False)
        assert seen == []
        assert not field.enabled


class TestAmountField:
    def test_starts_blank_and_disabled(self) -> None:
        field = AmountField("foreign")
        assert field.value == ""
        assert not field.enabled

    @pytest.mark.parametrize("value,valid", [("", True), ("1.5", True), ("01", False), ("1.23456", False)])
    def test_valid(self, value: str, valid: bool) -> None:
        field = AmountField("foreign")
        field.set_value(value)
        assert field.valid is valid


class TestReactorSet:
    def test_dispose_unsubscribes_all(self) -> None:
        a, b = Field("a", 0), Field("b", 0)
        reactors = ReactorSet()
        reactors.add(a.subscribe(lambda v: None))
        reactors.add(b.subscribe(lambda v: None))
        assert len(reactors) == 2

        reactors.dispose()
        reactors.dispose()
        assert a.listeners == []
        assert b.listeners == []
        assert len(reactors) == 0

    def test_add_after_dispose_unsubscribes(self) -> None:
        field = Field("a", 0)
        reactors = ReactorSet()
        reactors.dispose()
        reactors.add(field.subscribe(lambda v: None))
        assert field.listeners == []


class TestStateSignal:
    def test_subscribe_replays_current(self) -> None:
        signal = StateSignal("ready")
        seen: list[str] = []
        signal.subscribe(seen.append)
        signal.emit("loadingError")
        assert seen == ["ready", "loadingError"]

    @pytest.mark.asyncio
    async def test_wait_for_current_returns_immediately(self) -> None:
        signal = StateSignal("ready")
        assert await signal.wait_for("ready") == "ready"

    @pytest.mark.asyncio
    async def test_wait_for_later_value(self) -> None:
        signal = StateSignal("fetchingCurrencies")
        waiter = asyncio.ensure_future(signal.wait_for("ready", "loadingError"))
        await asyncio.sleep(0)
        signal.emit("fetchingRates")
        await asyncio.sleep(0)
        assert not waiter.done()
        signal.emit("loadingError")
        assert await waiter == "loadingError"
