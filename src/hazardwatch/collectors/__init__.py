"""
Collectors: declarative ones built from source documents plus the
bespoke ones registered below.

Importing this package imports every bespoke collector module so that
its ``@register_collector`` decorator runs.
"""

from . import (  # noqa: F401
    aircraft,
    aprs,
    erddap,
    fires,
    gdacs,
    gfs,
    kiwisdr,
    lightning,
    prociv,
    space_weather,
    tec,
)
from .base import (
    BaseCollector,
    CollectorDescriptor,
    CollectorRunResult,
    CollectorState,
)
from .declarative import GenericSourceCollector, build_source_collectors
from .registry import (
    CollectorRegistry,
    list_collector_types,
    register_collector,
)
from .source_config import SourceConfig, load_source_configs

__all__ = [
    "BaseCollector",
    "CollectorDescriptor",
    "CollectorRegistry",
    "CollectorRunResult",
    "CollectorState",
    "GenericSourceCollector",
    "SourceConfig",
    "build_source_collectors",
    "list_collector_types",
    "load_source_configs",
    "register_collector",
]
