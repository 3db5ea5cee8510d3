from __future__ import annotations

from typing import Callable, Dict

from sources.base import DatasetSource


_REGISTRY: Dict[str, Callable[[], DatasetSource]] = {}


def register(name: str, factory: Callable[[], DatasetSource]) -> None:
    _REGISTRY[name] = factory


def get_source(name: str) -> DatasetSource:
    if name not in _REGISTRY:
        raise KeyError(f"Unknown source: {name}")
    return _REGISTRY[name]()


def available_sources() -> Dict[str, Callable[[], DatasetSource]]:
    return dict(_REGISTRY)
