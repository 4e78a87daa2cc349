"""
HazardWatch CLI: dynamically loads commands from plugins/cli.
"""

import importlib
import logging
import pathlib
import pkgutil

import click

from hazardwatch.settings import settings

# Logging configuration for the whole package
logger = logging.getLogger("hazardwatch")
handler = logging.StreamHandler()
formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(getattr(logging, settings.log_level))

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option(
    "--log-level",
    default=settings.log_level,
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Set logging level",
)
@click.pass_context
def main(ctx, log_level):
    """
    HazardWatch CLI
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper()

    # Update logging level
    logger.setLevel(getattr(logging, log_level.upper()))
    settings.log_level = log_level.upper()


def load_commands():
    """
    Auto-discover and register click commands from hazardwatch/plugins/cli/*.py
    Each plugin module must define a top-level `cli` click.Command.
    """
    plugins_path = pathlib.Path(__file__).parent / "plugins" / "cli"
    package = "hazardwatch.plugins.cli"
    for _, module_name, _ in pkgutil.iter_modules([str(plugins_path)]):
        full_name = f"{package}.{module_name}"
        try:
            module = importlib.import_module(full_name)
            cmd = getattr(module, "cli", None)
            if isinstance(cmd, click.Command):
                main.add_command(cmd)
        except Exception as e:
            logger.error(f"Failed to load plugin {full_name}: {e}")


# Load all plugin commands
load_commands()

if __name__ == "__main__":
    main()
