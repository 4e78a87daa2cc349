"""
CLI command: run

Starts the worker: every enabled collector on its schedule plus the
health server, until interrupted.
"""

import logging
from typing import Optional

import click

from hazardwatch.settings import settings
from hazardwatch.worker import Worker

# Configure module-level logger
logger = logging.getLogger("hazardwatch.cli.run")


@click.command("run")
@click.option(
    "--backend",
    type=click.Choice(["redis", "memory"]),
    default=None,
    help="Override the configured cache backend",
)
@click.option("--no-health", is_flag=True, help="Do not serve health endpoints")
def cli(backend: Optional[str], no_health: bool) -> None:
    """
    Run the collection worker until SIGINT or SIGTERM.
    """
    update = {}
    if backend:
        update["cache_backend"] = backend
    if no_health:
        update["health_enabled"] = False
    run_settings = settings.model_copy(update=update) if update else settings

    logger.info(
        f"Starting worker (backend={run_settings.cache_backend}, "
        f"sources={run_settings.sources_dir})"
    )
    Worker(run_settings).run()
