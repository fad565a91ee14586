"""Decide when newly published rates should be offered, and ask the user.

The Bank of Canada publishes each business day's rates at 16:30 Eastern.
A session that loaded its rates before that time on a weekday is offered a
reload once the publish time passes; a session that loaded after it is not.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from cadconvert.config import Settings
from cadconvert.models import RateFreshnessState

LOGGER = logging.getLogger(__name__)

PromptFn = Callable[[], Awaitable[bool]]
Clock = Callable[[], datetime]


class TickOutcome(enum.Enum):
    UP_TO_DATE = "up_to_date"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SKIPPED = "skipped"


class RateFreshnessScheduler:
    """Periodic check for new rates plus the accept/decline prompt protocol.

    ``prompt`` is awaited for a yes/no answer; ``on_refresh`` is called when the
    user accepts, and is expected to reinitialize the converter (which stops
    this scheduler's timer as part of the reset).
    """

    def __init__(
        self,
        settings: Settings,
        prompt: PromptFn,
        on_refresh: Callable[[], None],
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings
        self.tz = settings.tz
        self.interval = settings.check_interval
        self._prompt = prompt
        self._on_refresh = on_refresh
        self._clock = clock or (lambda: datetime.now(self.tz))
        self.state = RateFreshnessState(force_prompt=settings.force_update_prompt)
        self._task: asyncio.Task[None] | None = None

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def _domestic(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tz)
        return moment.astimezone(self.tz)

    def record_fetch(self, instant: datetime) -> None:
        """Mark a completed load; a fresh load may be declined again."""
        self.state.last_fetch_instant = self._domestic(instant)
        self.state.user_skipped_refresh = False

    def clear_force_prompt(self) -> None:
        if self.state.force_prompt:
            LOGGER.debug("Unsetting forced update prompt")
        self.state.force_prompt = False

    def new_rates_available(
        self, now: datetime | None = None, last_fetch: datetime | None = None
    ) -> bool:
        """True if rates were published after the last fetch, on the fetch's day.

        ``now`` and ``last_fetch`` default to the live clock and the recorded
        fetch instant; pass them to evaluate a fixed scenario.
        """
        if self.state.force_prompt:
            return True

        fetched = last_fetch if last_fetch is not None else self.state.last_fetch_instant
        if fetched is None:
            return False

        now_local = self._domestic(now) if now is not None else self.now()
        fetched_local = self._domestic(fetched)

        # Monday=0 .. Friday=4
        if now_local.weekday() > 4:
            return False

        publish = fetched_local.replace(
            hour=self.settings.publish_hour,
            minute=self.settings.publish_minute,
            second=0,
            microsecond=0,
        )
        return fetched_local < publish <= now_local

    @property
    def outdated(self) -> bool:
        """Newer rates exist but the user chose to keep the current ones."""
        return self.state.user_skipped_refresh and self.new_rates_available()

    async def tick(self) -> TickOutcome:
        if not self.new_rates_available():
            return TickOutcome.UP_TO_DATE
        if self.state.user_skipped_refresh:
            return TickOutcome.SKIPPED

        LOGGER.info("New rates are available, prompting")
        if await self._prompt():
            LOGGER.info("Fetching new rates")
            self._on_refresh()
            return TickOutcome.ACCEPTED

        LOGGER.info("New rates declined for this session")
        self.state.user_skipped_refresh = True
        return TickOutcome.DECLINED

    # --- Timer lifecycle ---

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel the timer. Safe to call repeatedly, or from inside a tick."""
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.interval)
            await self.tick()
