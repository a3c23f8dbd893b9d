"""
Rendezvous CLI - run and inspect the signaling server.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiohttp
import click
from rich.console import Console
from rich.table import Table

from .client import SignalingClient
from .config import Config, set_config
from .exceptions import RendezvousError

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()]
    )


def load_config(data_dir: Optional[str]) -> Config:
    return Config.load(Path(data_dir) if data_dir else None).apply_env()


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx, verbose):
    """Rendezvous - signaling relay for peer-to-peer connection setup"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


@main.command()
@click.option('--host', help='Address to listen on')
@click.option('--port', '-p', type=int, help='Port to listen on')
@click.option('--max-expiry-ms', type=int, help='Furthest an announced expiry may lie in the future')
@click.option('--data-dir', type=click.Path(), help='Data directory holding config.json')
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int], max_expiry_ms: Optional[int], data_dir: Optional[str]):
    """Run the signaling server."""
    from .server import run

    config = load_config(data_dir)
    if host:
        config.host = host
    if port is not None:
        config.port = port
    if max_expiry_ms is not None:
        config.max_expiry_ms = max_expiry_ms
    if ctx.obj.get('verbose'):
        config.log_level = "DEBUG"
    set_config(config)

    console.print(f"\n[bold blue]Rendezvous signaling server[/bold blue] on "
                  f"[cyan]ws://{config.host}:{config.port}/[/cyan]")
    console.print(f"   Max announce expiry: {config.max_expiry_ms} ms\n")

    run(config)


@main.command()
@click.option('--url', '-u', default='ws://127.0.0.1:8080/', show_default=True, help='Server WebSocket URL')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
def agents(url: str, as_json: bool):
    """List agents registered on a running server."""

    async def fetch():
        async with SignalingClient(url) as client:
            return await client.get_all_agents()

    try:
        found = asyncio.run(fetch())
    except (RendezvousError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        console.print(f"[red]Failed to query {url}: {e}[/red]")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps([agent.model_dump() for agent in found], indent=2))
        return

    if not found:
        console.print("[yellow]No agents registered.[/yellow]")
        return

    table = Table(title=f"Agents on {url}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Expires", style="dim")

    for agent in found:
        expires = datetime.fromtimestamp(agent.expiry / 1000).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(agent.id, agent.name, expires)

    console.print(table)


@main.command("config")
@click.option('--data-dir', type=click.Path(), help='Data directory holding config.json')
@click.option('--save', is_flag=True, help='Write the effective configuration to config.json')
def show_config(data_dir: Optional[str], save: bool):
    """Show the effective configuration."""
    config = load_config(data_dir)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    if save:
        config.save()
        console.print(f"\n[green]✓ Saved to {config.config_path}[/green]")


if __name__ == '__main__':
    main()
