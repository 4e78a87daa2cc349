"""
CLI command: sources

Lists and validates the declarative source documents.
"""

import logging
from pathlib import Path
from typing import Optional

import click

from hazardwatch.collectors.source_config import load_source_configs
from hazardwatch.settings import settings

# Configure module-level logger
logger = logging.getLogger("hazardwatch.cli.sources")


@click.command("sources")
@click.option(
    "--dir",
    "directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Source document directory (defaults to the configured one)",
)
def cli(directory: Optional[Path]) -> None:
    """
    List the enabled source documents found in the sources directory.

    Invalid documents are reported as warnings and left out.
    """
    directory = directory or settings.sources_dir
    configs = load_source_configs(directory)
    if not configs:
        click.echo(f"No valid sources in {directory}")
        return

    click.echo(f"Sources in {directory}:")
    for config in configs:
        auth = f" auth={config.auth.type.value}" if config.auth else ""
        click.echo(
            f"  - {config.name}: every {config.schedule.interval_ms / 1000:g}s, "
            f"ttl {config.schedule.ttl_seconds}s -> {config.cache.key}{auth}"
        )
