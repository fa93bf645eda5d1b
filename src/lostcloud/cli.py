"""
lostcloud CLI.

Usage:
    lostcloud run play.example.net:25565 --name MyBot
    lostcloud identity
"""

import asyncio
import signal
from typing import Optional

import typer

from lostcloud.config import CONFIG
from lostcloud.logger import get_logger, setup_logging
from lostcloud.sessions.credentials import generate_identity
from lostcloud.sessions.errors import CreationError
from lostcloud.sessions.manager import SessionManager
from lostcloud.sessions.models import ConnectionParams
from lostcloud.sessions.registry import SessionRegistry

app = typer.Typer(help="lostcloud - supervised, self-reconnecting sessions")
logger = get_logger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    lostcloud - supervised, self-reconnecting sessions.
    """
    setup_logging(level="DEBUG" if verbose else CONFIG.log_level, log_file=CONFIG.log_file)


@app.command("identity")
def identity():
    """Print a freshly generated session id and key."""
    pair = generate_identity()
    typer.echo(f"ID:  {pair.id}")
    typer.echo(f"Key: {pair.key}")


@app.command("run")
def run(
    address: str = typer.Argument(..., help="Server address as HOST[:PORT]"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    version: Optional[str] = typer.Option(None, "--version", help="Protocol version"),
    bridge: Optional[str] = typer.Option(None, "--bridge", help="Session bridge URL"),
):
    """Run one supervised session until interrupted."""
    if bridge:
        CONFIG.bridge_url = bridge

    try:
        params = ConnectionParams.from_address(
            address,
            display_name=name,
            version=version,
            default_port=CONFIG.default_port,
        )
    except ValueError as e:
        typer.echo(f"❌ Invalid address '{address}': {e}", err=True)
        raise typer.Exit(code=2)

    try:
        asyncio.run(_run_session(params))
    except CreationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)


async def _run_session(params: ConnectionParams) -> None:
    manager = SessionManager(SessionRegistry())
    pair = await manager.create(params)
    typer.echo(f"✅ Session live on {params.address}")
    typer.echo(f"   ID:  {pair.id}")
    typer.echo(f"   Key: {pair.key}  (shown once)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
        loop.add_signal_handler(signal.SIGTERM, stop.set)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl+C raises instead.
        pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await manager.shutdown()


if __name__ == "__main__":
    app()
