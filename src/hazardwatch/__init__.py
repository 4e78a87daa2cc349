"""
HazardWatch: background collection and caching of live hazard data.

Subpackages
-----------
- api:         Health endpoints served alongside the worker
- cache:       Key/value stores with per-entry time-to-live
- collectors:  Collector contract, declarative and bespoke collectors
- fetch:       Bounded retry HTTP transport
- formats:     Binary format decoders (GRIB2)
- pipeline:    Scheduler driving collectors on their own intervals
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version(__name__)
except PackageNotFoundError:  # local editable install
    __version__ = "0.0.0-dev"

__all__ = ["__version__"]
