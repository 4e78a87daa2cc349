"""
CLI command: info

Displays the package version, registered bespoke collectors and the
declarative sources found.
"""

import logging

import click

from hazardwatch import __version__
from hazardwatch.collectors import CollectorRegistry, load_source_configs
from hazardwatch.settings import settings

# Configure module-level logger
logger = logging.getLogger("hazardwatch.cli.info")


@click.command("info")
def cli() -> None:
    """
    Show package metadata and available collectors.
    """
    click.echo(f"HazardWatch version: {__version__}")
    click.echo(f"Cache backend: {settings.cache_backend}")

    click.echo("\nBespoke collectors:")
    for name, description in CollectorRegistry.get_info().items():
        disabled = " (disabled)" if name in settings.disabled_collectors else ""
        click.echo(f"  - {name}: {description}{disabled}")

    click.echo("\nDeclarative sources:")
    for config in load_source_configs(settings.sources_dir):
        click.echo(f"  - {config.name}")
