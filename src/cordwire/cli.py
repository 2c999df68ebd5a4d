"""
cordwire command line.

Usage:
    cordwire connect [--token TOKEN] [--intents NAMES] [--verbose]
    cordwire intents NAME [NAME ...]
"""

import asyncio
import signal
from typing import List, Optional

import typer

from cordwire.config import CONFIG
from cordwire.intents import Intents
from cordwire.logger import get_logger, setup_logging

logger = get_logger(__name__)

app = typer.Typer(help="cordwire - gateway session client")


def _parse_intents(value: Optional[str]) -> int:
    if not value:
        return CONFIG.intents
    if value.isdigit():
        return int(Intents.parse(int(value)))
    return int(Intents.parse(value.split(",")))


@app.command("intents")
def intents_command(
    names: List[str] = typer.Argument(..., help="Intent names, e.g. GUILDS GUILD_MESSAGES"),
):
    """Print the bitfield for a set of intent names."""
    try:
        value = Intents.parse(names)
    except ValueError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(code=1)
    typer.echo(str(int(value)))


@app.command("connect")
def connect_command(
    token: Optional[str] = typer.Option(
        None, "--token", "-t", help="Bot token (default: $CORDWIRE_TOKEN)"
    ),
    intents: Optional[str] = typer.Option(
        None, "--intents", "-i", help="Comma-separated intent names or a bitfield"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable DEBUG logging"),
):
    """Open a gateway session and print dispatched events until Ctrl+C."""
    setup_logging(level="DEBUG" if verbose else CONFIG.log_level)

    token = token or CONFIG.token
    if not token:
        typer.echo("❌ No token given. Use --token or set CORDWIRE_TOKEN.")
        raise typer.Exit(code=1)

    try:
        intent_bits = _parse_intents(intents)
    except ValueError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(code=1)

    asyncio.run(_run_client(token, intent_bits))


async def _run_client(token: str, intent_bits: int) -> None:
    from cordwire.client import Client

    client = Client(config=CONFIG.model_copy(update={"intents": intent_bits}))

    @client.on("*")
    def _print_event(name, payload):
        if name not in ("debug", "state"):
            typer.echo(f"📨 {name}")

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except NotImplementedError:
        pass

    await client.login(token)
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await client.close()
