"""Command line entry point for the load generator."""

import asyncio
import logging
import sys

import click

from .runner import run


@click.command()
@click.argument("url")
@click.option("--workers", "-c", default=1, show_default=True, type=click.IntRange(min=1), help="Concurrent workers.")
@click.option("--iterations", "-n", type=click.IntRange(min=1), help="Iterations per worker.")
@click.option("--duration", "-d", type=click.FloatRange(min=0, min_open=True), help="Stop after this many seconds.")
@click.option("--seed", type=int, help="Seed for reproducible payloads.")
@click.option("--timeout", default=5.0, show_default=True, help="Per-request timeout in seconds.")
@click.option("--log-level", default="WARNING", show_default=True)
def main(url, workers, iterations, duration, seed, timeout, log_level):
    """Run the ledger workload against URL and validate every response."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    report = asyncio.run(
        run(url, workers=workers, iterations=iterations, duration=duration, seed=seed, timeout=timeout)
    )
    for line in report.lines():
        click.echo(line)
    if not report.ok:
        click.echo("✗ run failed", err=True)
        sys.exit(1)
    click.echo("✓ run passed")


if __name__ == "__main__":
    main()
