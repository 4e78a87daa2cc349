"""
Registry of bespoke collector classes.

Bespoke collectors register themselves with ``@register_collector`` at
import time; the worker asks the registry for instances and combines
them with the declarative collectors built from source documents.
"""

import logging
from typing import Dict, Iterable, List, Optional, Type

from ..cache.base import CacheStore
from ..settings import Settings
from .base import BaseCollector

logger = logging.getLogger(__name__)


class CollectorRegistry:
    """
    Registry mapping collector type names to classes.

    Registered classes must provide an ``instances(store, settings)``
    classmethod returning the collector instances they contribute; one
    class may contribute several, e.g. one per GFS product.
    """

    _collectors: Dict[str, Type[BaseCollector]] = {}

    @classmethod
    def register(cls, name: str, collector_class: Type[BaseCollector]) -> None:
        """
        Register a collector class under name.

        Args:
            name: Unique collector type identifier
            collector_class: Class inheriting from BaseCollector
        """
        if not issubclass(collector_class, BaseCollector):
            raise ValueError(
                f"Collector class must inherit from BaseCollector: {collector_class}"
            )
        if not callable(getattr(collector_class, "instances", None)):
            raise ValueError(
                f"Collector class must define instances(store, settings): "
                f"{collector_class}"
            )
        cls._collectors[name] = collector_class
        logger.debug(f"Registered collector: {name} -> {collector_class.__name__}")

    @classmethod
    def get_available_types(cls) -> List[str]:
        """Get list of all registered collector types."""
        return sorted(cls._collectors)

    @classmethod
    def get(cls, name: str) -> Type[BaseCollector]:
        try:
            return cls._collectors[name]
        except KeyError:
            raise KeyError(f"Unknown collector type: {name}") from None

    @classmethod
    def create_collectors(
        cls,
        store: CacheStore,
        settings: Settings,
        types: Optional[Iterable[str]] = None,
    ) -> List[BaseCollector]:
        """
        Instantiate collectors for the given types, or all registered ones.

        A class that fails to build is logged and skipped.
        """
        collectors: List[BaseCollector] = []
        for name in types if types is not None else cls.get_available_types():
            collector_class = cls.get(name)
            try:
                collectors.extend(collector_class.instances(store, settings))
            except Exception as e:
                logger.error(f"Failed to build collector {name}: {e}")
        return collectors

    @classmethod
    def get_info(cls) -> Dict[str, str]:
        """Get information about all registered collectors."""
        info = {}
        for name, collector_class in sorted(cls._collectors.items()):
            doc = (collector_class.__doc__ or "No description").strip().splitlines()[0]
            info[name] = f"{collector_class.__name__} - {doc}"
        return info


def register_collector(
    name: str, collector_class: Optional[Type[BaseCollector]] = None
):
    """
    Decorator and function for registering collectors.

    Can be used as:
    1. Function: register_collector("sst", SstCollector)
    2. Decorator: @register_collector("sst")
    """

    def decorator(klass: Type[BaseCollector]) -> Type[BaseCollector]:
        CollectorRegistry.register(name, klass)
        return klass

    if collector_class is not None:
        CollectorRegistry.register(name, collector_class)
        return collector_class
    return decorator


def list_collector_types() -> List[str]:
    """List all registered collector types."""
    return CollectorRegistry.get_available_types()
