#!/usr/bin/env python3
"""
Share Code CLI

Command-line interface for one-shot file sharing.

Usage:
    codeshare start              # Start the HTTP API
    codeshare share FILE         # Offer a local file until it is fetched
    codeshare fetch CODE         # Fetch the file offered under CODE
    codeshare config             # Print the effective configuration
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.logging import RichHandler
from rich.markup import escape

from .config import load_config
from .node import ShareNode
from .registry import parse_code
from .transfer import SessionOutcome, TransferError
from .transfer.protocol import DEFAULT_DOWNLOAD_NAME

console = Console()


def setup_logging(level: str = 'INFO', verbose: bool = False):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.option('--upload-dir', help='Directory for uploaded files')
@click.pass_context
def cli(ctx, verbose, config_path, upload_dir):
    """Share Code - offer a file once under a numeric share code."""
    config = load_config(Path(config_path) if config_path else None)
    if upload_dir:
        config.upload_dir = Path(upload_dir)
    setup_logging(config.log_level, verbose)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', help='API bind address')
@click.option('--api-port', type=int, help='REST API port')
@click.pass_context
def start(ctx, host, api_port):
    """Start the HTTP API."""
    config = ctx.obj['config']
    host = host or config.host
    api_port = api_port or config.api_port
    
    async def run():
        from .api import run_api_server
        
        node = ShareNode(config)
        console.print(Panel.fit(
            f"[bold green]Share Node[/bold green]\n\n"
            f"API: [yellow]http://{host}:{api_port}[/yellow]\n"
            f"Upload Dir: [blue]{config.upload_dir}[/blue]\n"
            f"Codes: [yellow]{config.code_min}-{config.code_max}[/yellow]\n"
            f"Offer TTL: [yellow]{config.offer_ttl:.0f}s[/yellow]",
            title="Node Info"
        ))
        console.print(f"\n[dim]API docs at http://localhost:{api_port}/docs[/dim]\n")
        
        # The API lifespan starts and stops the node
        await run_api_server(node, host=host, port=api_port)
    
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def share(ctx, file_path):
    """Offer a local file and wait until it is fetched."""
    config = ctx.obj['config']
    
    async def run():
        node = ShareNode(config)
        await node.start()
        
        try:
            code = await node.share_file(Path(file_path))
            
            console.print(Panel.fit(
                f"[bold green]File Offered[/bold green]\n\n"
                f"Name: [cyan]{Path(file_path).name}[/cyan]\n\n"
                f"[bold]Share code (share this):[/bold]\n"
                f"[green]{code}[/green]",
                title="Shared File"
            ))
            
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task("Waiting for the download...", total=None)
                outcome = await node.wait_consumed(code)
            
            if outcome == SessionOutcome.SERVED:
                console.print("[green]✓ File sent[/green]")
            else:
                label = outcome.value if outcome else 'unknown'
                console.print(f"[red]✗ Offer ended: {label}[/red]")
        finally:
            await node.stop()
    
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Offer withdrawn[/yellow]")


@cli.command()
@click.argument('code')
@click.option('--output', '-o', type=click.Path(), help='Output path')
@click.option('--host', help='Host running the listener (default: this node)')
@click.pass_context
def fetch(ctx, code, output, host):
    """Fetch the file offered under CODE."""
    config = ctx.obj['config']
    if host:
        config.bridge_host = host
    
    try:
        port = parse_code(code)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='CODE')
    
    async def run():
        node = ShareNode(config)
        
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Fetching code {port}...", total=None)
            try:
                result = await node.fetch(port)
            except TransferError as e:
                console.print(f"\n[red]✗ Download failed: {escape(str(e))}[/red]")
                return None
        
        name = Path(result.file_name).name or DEFAULT_DOWNLOAD_NAME
        target = Path(output) if output else Path.cwd() / name
        if target.is_dir():
            target = target / name
        shutil.move(str(result.path), target)
        
        console.print(f"\n[green]✓ Downloaded {format_size(result.size)} to: {target}[/green]")
        return target
    
    if asyncio.run(run()) is None:
        ctx.exit(1)


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Print the effective configuration."""
    console.print_json(json.dumps(ctx.obj['config'].to_dict()))


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
