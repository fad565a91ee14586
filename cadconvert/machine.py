"""The converter state machine.

``transition`` is the whole lifecycle as data: for a state and an event it
returns the next state and the effects to perform. ``Converter`` dispatches
events through it, performs the effects, owns the form fields and keeps the
two amount fields in sync.

Load cycle::

    fetchingCurrencies -> fetchingRates -> ready
            \\                    \\
             +--> loadingError <-+

Accepting the "new rates" prompt in ``ready`` resets to
``fetchingCurrencies``; ``START`` resets from anywhere.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from cadconvert import engine
from cadconvert.config import Settings
from cadconvert.fields import AmountField, Field, ReactorSet, StateSignal
from cadconvert.freshness import Clock, PromptFn, RateFreshnessScheduler
from cadconvert.models import (
    BASE_CURRENCY,
    CURRENCY_METADATA,
    ConversionDirection,
    ConverterState,
    CurrencyOption,
    FocusRequest,
    LastConversion,
    RateWindow,
)
from cadconvert.valet import FetchFailure, RateSource, RateTable

LOGGER = logging.getLogger(__name__)


class Event(enum.Enum):
    START = "start"
    REFRESH_ACCEPTED = "refresh_accepted"
    CURRENCIES_LOADED = "currencies_loaded"
    RATES_LOADED = "rates_loaded"
    FETCH_FAILED = "fetch_failed"


class Effect(enum.Enum):
    STOP_TIMER = "stop_timer"
    DISPOSE_REACTORS = "dispose_reactors"
    CLEAR_FORCE_PROMPT = "clear_force_prompt"
    BEGIN_CYCLE = "begin_cycle"
    RESET_FORM = "reset_form"
    INSTALL_REACTORS = "install_reactors"
    FETCH_CURRENCIES = "fetch_currencies"
    APPLY_CURRENCIES = "apply_currencies"
    FETCH_RATES = "fetch_rates"
    APPLY_RATES = "apply_rates"
    START_TIMER = "start_timer"


@dataclass(frozen=True, slots=True)
class Step:
    state: ConverterState
    effects: tuple[Effect, ...] = ()


_RESET = (
    Effect.STOP_TIMER,
    Effect.DISPOSE_REACTORS,
    Effect.BEGIN_CYCLE,
    Effect.RESET_FORM,
    Effect.INSTALL_REACTORS,
    Effect.FETCH_CURRENCIES,
)


def transition(state: ConverterState | None, event: Event) -> Step | None:
    """Next step for ``event`` in ``state``, or ``None`` if the event is ignored."""
    if event is Event.START:
        return Step(ConverterState.FETCHING_CURRENCIES, _RESET)

    if state is ConverterState.READY and event is Event.REFRESH_ACCEPTED:
        return Step(
            ConverterState.FETCHING_CURRENCIES,
            (Effect.CLEAR_FORCE_PROMPT, *_RESET),
        )

    if state is ConverterState.FETCHING_CURRENCIES and event is Event.CURRENCIES_LOADED:
        return Step(
            ConverterState.FETCHING_RATES,
            (Effect.APPLY_CURRENCIES, Effect.FETCH_RATES),
        )

    if state is ConverterState.FETCHING_RATES and event is Event.RATES_LOADED:
        return Step(ConverterState.READY, (Effect.APPLY_RATES, Effect.START_TIMER))

    if event is Event.FETCH_FAILED and state in (
        ConverterState.FETCHING_CURRENCIES,
        ConverterState.FETCHING_RATES,
    ):
        return Step(ConverterState.LOADING_ERROR)

    return None


class Converter:
    """Foreign/CAD converter: load lifecycle, linked amount fields, freshness prompt.

    Use as an async context manager so the timer, reactors and any in-flight
    fetch are released on exit::

        async with Converter(source, settings, prompt) as converter:
            converter.start()
            await converter.wait_settled()
    """

    def __init__(
        self,
        source: RateSource,
        settings: Settings,
        prompt: PromptFn,
        metadata: list[CurrencyOption] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.source = source
        self.settings = settings
        self.metadata = list(metadata if metadata is not None else CURRENCY_METADATA)
        self.scheduler = RateFreshnessScheduler(
            settings, prompt, on_refresh=self._refresh_accepted, clock=clock
        )

        self.state_signal = StateSignal()
        self.currency_field: Field[str | CurrencyOption] = Field("currency", "")
        self.foreign_amount = AmountField("foreign")
        self.base_amount = AmountField("base")
        self.date_field: Field[date | None] = Field("date", None, enabled=False)

        self.options: list[CurrencyOption] = []
        self.selection: CurrencyOption | None = None
        self.direction = ConversionDirection.TO_BASE
        self.last_conversion: LastConversion | None = None
        self.window: RateWindow | None = None
        self.focus: FocusRequest | None = None

        self.generation = 0
        self._reactors = ReactorSet()
        self._fetch: asyncio.Task[None] | None = None

    async def __aenter__(self) -> Converter:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def state(self) -> ConverterState | None:
        return ConverterState(self.state_signal.value) if self.state_signal.value else None

    # --- Dispatch ---

    def start(self) -> None:
        """(Re)initialize from scratch. Safe to call repeatedly."""
        self.dispatch(Event.START)

    def dispatch(self, event: Event, payload: Any = None, generation: int | None = None) -> None:
        if generation is not None and generation != self.generation:
            LOGGER.debug(
                "Dropping %s from load cycle %d (current %d)",
                event.value,
                generation,
                self.generation,
            )
            return

        step = transition(self.state, event)
        if step is None:
            LOGGER.debug("Ignoring %s in state %s", event.value, self.state_signal.value)
            return

        for effect in step.effects:
            self._perform(effect, payload)
        self._set_state(step.state)

    def _set_state(self, state: ConverterState) -> None:
        if state is ConverterState.READY:
            LOGGER.info("converter is ready")
        elif state is ConverterState.LOADING_ERROR:
            LOGGER.error("failed to load data from the Bank of Canada")
        else:
            LOGGER.debug("converter state -> %s", state.value)
        self.state_signal.emit(state.value)

    def _perform(self, effect: Effect, payload: Any) -> None:
        if effect is Effect.STOP_TIMER:
            self.scheduler.stop()
        elif effect is Effect.DISPOSE_REACTORS:
            self._reactors.dispose()
        elif effect is Effect.CLEAR_FORCE_PROMPT:
            self.scheduler.clear_force_prompt()
        elif effect is Effect.BEGIN_CYCLE:
            self.generation += 1
        elif effect is Effect.RESET_FORM:
            self._reset_form()
        elif effect is Effect.INSTALL_REACTORS:
            self._install_reactors()
        elif effect is Effect.FETCH_CURRENCIES:
            self._launch(self.source.list_currencies, Event.CURRENCIES_LOADED)
        elif effect is Effect.APPLY_CURRENCIES:
            self._apply_currencies(payload)
        elif effect is Effect.FETCH_RATES:
            self._launch(self.source.list_observations, Event.RATES_LOADED)
        elif effect is Effect.APPLY_RATES:
            self._apply_rates(payload)
        elif effect is Effect.START_TIMER:
            self.scheduler.start()

    def _launch(self, loader: Any, loaded: Event) -> None:
        generation = self.generation

        async def run() -> None:
            try:
                result = await loader()
            except FetchFailure as exc:
                LOGGER.error("%s", exc)
                self.dispatch(Event.FETCH_FAILED, exc, generation=generation)
                return
            except Exception as exc:
                LOGGER.exception("Unexpected error while fetching for %s", loaded.value)
                self.dispatch(Event.FETCH_FAILED, exc, generation=generation)
                return
            try:
                self.dispatch(loaded, result, generation=generation)
            except Exception as exc:
                LOGGER.exception("Could not apply %s", loaded.value)
                self.dispatch(Event.FETCH_FAILED, exc, generation=generation)

        self._fetch = asyncio.get_running_loop().create_task(run())

    def _refresh_accepted(self) -> None:
        self.dispatch(Event.REFRESH_ACCEPTED)

    async def wait_settled(self) -> ConverterState:
        """Wait until loading has finished, successfully or not."""
        value = await self.state_signal.wait_for(
            ConverterState.READY.value, ConverterState.LOADING_ERROR.value
        )
        return ConverterState(value)

    async def close(self) -> None:
        self.scheduler.stop()
        self._reactors.dispose()
        fetch, self._fetch = self._fetch, None
        if fetch is not None and not fetch.done():
            fetch.cancel()
            try:
                await fetch
            except asyncio.CancelledError:
                pass

    # --- Loading ---

    def _reset_form(self) -> None:
        self.options = list(self.metadata)
        self.selection = None
        self.direction = ConversionDirection.TO_BASE
        self.last_conversion = None
        self.window = None
        self.focus = None
        self.currency_field.reset("", enabled=True)
        self.foreign_amount.reset("", enabled=False)
        self.base_amount.reset("", enabled=False)
        self.date_field.reset(None, enabled=False)

    def _install_reactors(self) -> None:
        self._reactors = ReactorSet()
        self._reactors.add(self.currency_field.subscribe(self._on_currency_changed))
        self._reactors.add(self.date_field.subscribe(self._on_date_changed))
        self._reactors.add(self.foreign_amount.subscribe(self._on_foreign_amount_changed))
        self._reactors.add(self.base_amount.subscribe(self._on_base_amount_changed))

    def _apply_currencies(self, codes: set[str]) -> None:
        before = len(self.options)
        self.options = engine.intersect_currencies(self.options, codes)
        LOGGER.debug("%d of %d currencies are available", len(self.options), before)

    def _apply_rates(self, table: RateTable) -> None:
        now = self.scheduler.now()
        self.window = engine.compute_rate_window(
            table, self.source.valid_dates(), now, self.scheduler.tz
        )
        self.date_field.enable()
        self.date_field.set_value(self.window.max_date)

        dropped = [o.alpha_code for o in self.options if not table.has_full_coverage(o.alpha_code)]
        if dropped:
            LOGGER.debug("Dropping currencies without full coverage: %s", ", ".join(dropped))
        self.options = engine.filter_full_coverage(self.options, table)

        self.scheduler.record_fetch(now)

    # --- User intents ---

    def filter_options(self, text: str) -> list[CurrencyOption]:
        return engine.filter_options(self.options, text)

    def select_currency(self, value: str | CurrencyOption) -> None:
        """Text is a partial entry; only a CurrencyOption counts as a selection."""
        self.currency_field.set_value(value)

    def enter_amount(self, text: str) -> None:
        """Type into whichever amount field is currently driving."""
        driving = self._driving_fields()[0]
        if driving.enabled:
            driving.set_value(text)

    def change_date(self, day: date) -> None:
        self.date_field.set_value(day)

    def switch_to_base(self) -> None:
        """Convert foreign -> CAD, the foreign amount field drives."""
        self._switch(ConversionDirection.TO_BASE)

    def switch_to_foreign(self) -> None:
        """Convert CAD -> foreign, the CAD amount field drives."""
        self._switch(ConversionDirection.FROM_BASE)

    def _switch(self, direction: ConversionDirection) -> None:
        if self.selection is None:
            return
        switching = self.direction is not direction
        self.direction = direction
        self._apply_direction()
        # Highlight only when the direction actually changes
        self.focus = FocusRequest(self._driving_fields()[0].name, highlight=switching)

    # --- Reactors ---

    def _on_currency_changed(self, value: str | CurrencyOption) -> None:
        if isinstance(value, CurrencyOption) and value in self.options:
            self.selection = value
            self.direction = ConversionDirection.TO_BASE
            self._apply_direction()
            self.focus = FocusRequest(self.foreign_amount.name, highlight=False)
            LOGGER.debug("Selected %s", value.alpha_code)
            self._sync()
            return
        if isinstance(value, CurrencyOption):
            LOGGER.debug("%s is not among the available currencies", value.alpha_code)

        # Partial text or an unavailable option: nothing is selected
        self.selection = None
        self.foreign_amount.set_value("", emit=False)
        self.foreign_amount.disable()
        self.base_amount.set_value("", emit=False)
        self.base_amount.disable()
        self.last_conversion = None

    def _on_date_changed(self, value: date | None) -> None:
        if self.selection is not None:
            self._sync()

    def _on_foreign_amount_changed(self, value: str) -> None:
        if self.direction is ConversionDirection.TO_BASE:
            self._sync()

    def _on_base_amount_changed(self, value: str) -> None:
        if self.direction is ConversionDirection.FROM_BASE:
            self._sync()

    # --- Sync rule ---

    def _driving_fields(self) -> tuple[AmountField, AmountField]:
        if self.direction is ConversionDirection.TO_BASE:
            return self.foreign_amount, self.base_amount
        return self.base_amount, self.foreign_amount

    def _apply_direction(self) -> None:
        driving, derived = self._driving_fields()
        driving.enable()
        derived.disable()

    def _sync(self) -> None:
        """Recompute the derived field from the driving one."""
        if self.selection is None:
            return
        driving, derived = self._driving_fields()
        if not driving.value or not driving.valid:
            derived.set_value("", emit=False)
            self.last_conversion = None
            return
        self._run_conversion(driving, derived)

    def _run_conversion(self, driving: AmountField, derived: AmountField) -> None:
        assert self.selection is not None
        on_date = self.date_field.value
        if on_date is None:
            return

        code = self.selection.alpha_code
        if self.direction is ConversionDirection.TO_BASE:
            from_code, to_code = code, BASE_CURRENCY
        else:
            from_code, to_code = BASE_CURRENCY, code

        converted, conversion = engine.run_conversion(
            self.source, driving.value, from_code, to_code, on_date
        )
        derived.set_value(converted, emit=False)
        self.last_conversion = conversion

    # --- Freshness ---

    def new_rates_available(
        self, now: datetime | None = None, last_fetch: datetime | None = None
    ) -> bool:
        return self.scheduler.new_rates_available(now, last_fetch)
