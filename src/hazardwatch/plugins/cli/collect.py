"""
CLI command: collect

Runs a single collector once and prints the run result, optionally with
the published value.
"""

import json
import logging
from typing import Optional

import click

from hazardwatch.cache import create_store
from hazardwatch.settings import settings
from hazardwatch.worker import build_collectors

# Configure module-level logger
logger = logging.getLogger("hazardwatch.cli.collect")


@click.command("collect")
@click.argument("name", type=click.STRING, required=False)
@click.option(
    "--backend",
    type=click.Choice(["redis", "memory"]),
    default="memory",
    show_default=True,
    help="Cache backend to publish into",
)
@click.option("--show", is_flag=True, help="Print the published value")
def cli(name: Optional[str], backend: str, show: bool) -> None:
    """
    Run collector NAME once. Without NAME, list collector names.
    """
    run_settings = settings.model_copy(update={"cache_backend": backend})
    store = create_store(run_settings)
    try:
        collectors = {c.name: c for c in build_collectors(run_settings, store)}

        if not name:
            click.echo("Available collectors:")
            for collector_name in sorted(collectors):
                click.echo(f"  - {collector_name}")
            return

        collector = collectors.get(name)
        if collector is None:
            logger.error(f"Unknown collector '{name}'")
            click.echo(
                f"Error: Unknown collector '{name}'.\n"
                f"Available: {', '.join(sorted(collectors))}"
            )
            raise click.Abort()

        collector.start()
        try:
            result = collector.run_once()
        finally:
            collector.stop()

        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        if show and result.success:
            value = store.get(collector.descriptor().cache_key)
            click.echo(json.dumps(value, indent=2, default=str))
        if not result.success:
            raise SystemExit(1)
    finally:
        store.close()
