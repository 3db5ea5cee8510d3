from __future__ import annotations

from typing import Any, Dict, Iterator, Protocol


class DatasetSource(Protocol):
    """Producer of one batch of raw post items.

    `iter_items` yields lazily and is consumed exactly once.
    """

    source_name: str

    def iter_items(self, location: str) -> Iterator[Dict[str, Any]]:
        ...
