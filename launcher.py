#!/usr/bin/env python3
"""
WAF Checker - Main Launcher
Prints the banner and effective configuration, then serves the FastAPI backend.
"""

import argparse
import asyncio
import sys

import uvicorn
from rich.console import Console

from wafcheck.config import CONFIG_FILE, ensure_dirs, get_config
from wafcheck.logger import set_verbose

console = Console()


BANNER = r"""
 __        ___    _____    ____ _               _
 \ \      / / \  |  ___|  / ___| |__   ___  ___| | _____ _ __
  \ \ /\ / / _ \ | |_    | |   | '_ \ / _ \/ __| |/ / _ \ '__|
   \ V  V / ___ \|  _|   | |___| | | |  __/ (__|   <  __/ |
    \_/\_/_/   \_\_|      \____|_| |_|\___|\___|_|\_\___|_|

            WAF Checker v0.1.0
            WAF detection & bypass testing
"""


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Serve the WAF Checker API.")
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def print_summary(config):
    rows = [
        ("API Server", f"http://{config.api.host}:{config.api.port}"),
        ("Probe timeout", f"{config.probe.timeout}s"),
        ("Batch limits", f"{config.batch.max_urls} URLs, concurrency <= {config.batch.max_concurrency}"),
        ("Remote payloads", "autoload" if config.payloads.autoload else "on demand"),
        ("Overrides file", str(CONFIG_FILE)),
    ]
    console.print("\n[bold]Configuration[/bold]")
    console.print("─" * 40)
    for label, value in rows:
        console.print(f"  {label + ':':<17}{value}")


async def serve(config):
    server = uvicorn.Server(uvicorn.Config(
        "wafcheck.api:app",
        host=config.api.host,
        port=config.api.port,
        log_level="warning",
    ))

    # SIGINT/SIGTERM are handled by uvicorn, which runs the lifespan
    # teardown that cancels in-flight batch jobs.
    console.print(f"[green]✓ Backend listening on {config.api.host}:{config.api.port}[/green]")
    console.print("[dim]Ctrl+C stops the server[/dim]\n")
    await server.serve()


def run(argv=None):
    args = parse_args(argv)
    if args.verbose:
        set_verbose(True)

    config = get_config()
    if args.host:
        config.api.host = args.host
    if args.port:
        config.api.port = args.port
    ensure_dirs()

    console.print(BANNER, style="bold cyan")
    print_summary(config)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    console.print("[yellow]Stopped.[/yellow]")
    return 0


if __name__ == "__main__":
    sys.exit(run())
