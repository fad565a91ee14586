"""CLI entry point for cadconvert."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import date

import click
import httpx

from cadconvert import formatters
from cadconvert.config import Settings
from cadconvert.engine import is_valid_amount
from cadconvert.log import configure_logging
from cadconvert.machine import Converter
from cadconvert.models import ConverterState, CurrencyOption
from cadconvert.valet import ValetRateSource

SESSION_HELP = """\
Commands:
  currency TEXT     pick a currency (code, name, or part of a name)
  amount VALUE      enter an amount in the active field
  to-cad            convert from the foreign currency to CAD
  to-foreign        convert from CAD to the foreign currency
  date YYYY-MM-DD   convert with the rates of another day
  list [TEXT]       show currencies matching TEXT
  status            show the current conversion
  quit              leave the session
"""


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(
            f"Invalid date format: {value!r}. Use YYYY-MM-DD."
        ) from exc


def resolve_currency(converter: Converter, text: str) -> str | CurrencyOption:
    """Turn typed text into a selection the way an autocomplete would.

    An exact code, an exact display string, or a single remaining match
    selects that currency; anything else stays partial text.
    """
    needle = text.strip()
    for option in converter.options:
        if needle.upper() == option.alpha_code or needle == option.display:
            return option
    matches = converter.filter_options(needle)
    if needle and len(matches) == 1:
        return matches[0]
    return text


class ConsolePrompt:
    """Yes/no prompt answered by the next line typed in the session."""

    def __init__(self) -> None:
        self._pending: asyncio.Future[bool] | None = None

    async def __call__(self) -> bool:
        click.echo(f"\n{formatters.PROMPT_TEXT} [y/N]")
        self._pending = asyncio.get_running_loop().create_future()
        try:
            return await self._pending
        finally:
            self._pending = None

    @property
    def waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def answer(self, line: str) -> None:
        if self.waiting:
            assert self._pending is not None
            self._pending.set_result(line.strip().lower() in ("y", "yes"))


async def _load(converter: Converter, announce: bool = False) -> None:
    converter.start()
    if announce:
        click.echo(formatters.format_status(converter), nl=False)
    state = await converter.wait_settled()
    if state is ConverterState.LOADING_ERROR:
        raise click.ClickException(formatters.ERROR_TEXT)


async def _run_convert(
    settings: Settings,
    amount: str,
    currency: str,
    from_cad: bool,
    on_date: date | None,
) -> Converter:
    async with httpx.AsyncClient(timeout=settings.timeout) as client:
        source = ValetRateSource(client, settings)
        async with Converter(source, settings, prompt=_never_prompt) as converter:
            await _load(converter)
            _apply_conversion(converter, amount, currency, from_cad, on_date)
            return converter


async def _never_prompt() -> bool:
    return False


def _apply_conversion(
    converter: Converter,
    amount: str,
    currency: str,
    from_cad: bool,
    on_date: date | None,
) -> None:
    selection = resolve_currency(converter, currency)
    if not isinstance(selection, CurrencyOption):
        raise click.BadParameter(
            f"Currency {currency!r} not available. "
            f"Try: {', '.join(o.alpha_code for o in converter.filter_options(currency)[:10])}",
            param_hint="CURRENCY",
        )
    converter.select_currency(selection)

    if on_date is not None:
        assert converter.window is not None
        if not converter.window.contains(on_date):
            raise click.BadParameter(
                f"Date must be between {converter.window.min_date} and "
                f"{converter.window.max_date}.",
                param_hint="--date",
            )
        converter.change_date(on_date)

    if from_cad:
        converter.switch_to_foreign()
    converter.enter_amount(amount)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Convert between Canadian dollars and foreign currencies.

    Uses the daily exchange rates published by the Bank of Canada.
    """
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    try:
        ctx.obj = Settings.from_env()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("amount")
@click.argument("currency")
@click.option("--from-cad", is_flag=True, help="AMOUNT is in CAD, convert to CURRENCY")
@click.option("--date", "on_date", default=None, help="Rate date (YYYY-MM-DD, default: today)")
@click.option(
    "--output",
    "output_format",
    default="table",
    type=click.Choice(["table", "json"]),
    help="Output format",
)
@click.pass_obj
def convert(
    settings: Settings,
    amount: str,
    currency: str,
    from_cad: bool,
    on_date: str | None,
    output_format: str,
) -> None:
    """Convert AMOUNT of CURRENCY to CAD (or CAD to CURRENCY with --from-cad)."""
    if not is_valid_amount(amount):
        raise click.BadParameter(
            f"{amount!r} is not a valid amount (no leading zeros, at most 4 decimals).",
            param_hint="AMOUNT",
        )
    day = _parse_date(on_date) if on_date else None

    try:
        converter = asyncio.run(_run_convert(settings, amount, currency, from_cad, day))
    except click.ClickException:
        raise
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if output_format == "json":
        click.echo(formatters.format_json(converter))
    else:
        click.echo(formatters.format_status(converter), nl=False)


async def _run_currencies(settings: Settings, text: str) -> list[CurrencyOption]:
    async with httpx.AsyncClient(timeout=settings.timeout) as client:
        source = ValetRateSource(client, settings)
        async with Converter(source, settings, prompt=_never_prompt) as converter:
            await _load(converter)
            return converter.filter_options(text)


@main.command()
@click.argument("text", default="")
@click.pass_obj
def currencies(settings: Settings, text: str) -> None:
    """List the currencies that can be converted, optionally filtered by TEXT."""
    try:
        options = asyncio.run(_run_currencies(settings, text))
    except click.ClickException:
        raise
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(formatters.format_options(options), nl=False)


def handle_command(converter: Converter, line: str) -> bool:
    """Apply one session command. Returns False when the session should end."""
    command, _, arg = line.strip().partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in ("quit", "exit"):
        return False
    if command == "currency":
        converter.select_currency(resolve_currency(converter, arg))
        if converter.selection is None:
            click.echo(formatters.format_options(converter.filter_options(arg)), nl=False)
            return True
    elif command == "amount":
        if converter.selection is None:
            click.echo("Pick a currency first.")
            return True
        converter.enter_amount(arg)
    elif command == "to-cad":
        converter.switch_to_base()
    elif command == "to-foreign":
        converter.switch_to_foreign()
    elif command == "date":
        try:
            day = _parse_date(arg)
        except click.BadParameter as exc:
            click.echo(exc.format_message())
            return True
        assert converter.window is not None
        if not converter.window.contains(day):
            click.echo(
                f"Pick a date between {converter.window.min_date} and {converter.window.max_date}."
            )
            return True
        converter.change_date(day)
    elif command == "list":
        click.echo(formatters.format_options(converter.filter_options(arg)), nl=False)
        return True
    elif command == "help":
        click.echo(SESSION_HELP, nl=False)
        return True
    elif command and command != "status":
        click.echo(f"Unknown command {command!r}. Type 'help' for commands.")
        return True

    click.echo(formatters.format_status(converter), nl=False)
    return True


async def _run_session(settings: Settings) -> None:
    prompt = ConsolePrompt()
    async with httpx.AsyncClient(timeout=settings.timeout) as client:
        source = ValetRateSource(client, settings)
        async with Converter(source, settings, prompt=prompt) as converter:
            await _load(converter, announce=True)
            click.echo(SESSION_HELP, nl=False)
            click.echo(formatters.format_status(converter), nl=False)

            while True:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line:
                    break
                if prompt.waiting:
                    prompt.answer(line)
                    # Let the scheduler act on the answer before the next command
                    await asyncio.sleep(0)
                    if converter.state is not ConverterState.READY:
                        await _load_after_refresh(converter)
                    continue
                if not handle_command(converter, line):
                    break


async def _load_after_refresh(converter: Converter) -> None:
    click.echo(formatters.format_status(converter), nl=False)
    state = await converter.wait_settled()
    if state is ConverterState.LOADING_ERROR:
        raise click.ClickException(formatters.ERROR_TEXT)
    click.echo(formatters.format_status(converter), nl=False)


@main.command()
@click.option(
    "--force-update-prompt",
    is_flag=True,
    help="Always offer new rates (for testing the prompt)",
)
@click.option(
    "--check-interval",
    type=float,
    default=None,
    help="Seconds between checks for new rates (default: 60)",
)
@click.pass_obj
def session(
    settings: Settings,
    force_update_prompt: bool,
    check_interval: float | None,
) -> None:
    """Interactive converter that offers new rates once they are published."""
    settings = settings.with_overrides(
        force_update_prompt=force_update_prompt or None,
        check_interval=check_interval,
    )
    try:
        asyncio.run(_run_session(settings))
    except click.ClickException:
        raise
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
