from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator

from sources.registry import register


logger = logging.getLogger(__name__)

# Keys scraper exports use to wrap the item array
_WRAPPER_KEYS = ("items", "posts", "data", "results")


class JsonDatasetSource:
    """Scraper export on disk: a JSON array, a wrapped object, or JSON Lines."""

    source_name = "json_dataset"

    def iter_items(self, location: str) -> Iterator[Dict[str, Any]]:
        path = Path(location)
        if path.suffix.lower() in (".jsonl", ".ndjson"):
            yield from self._iter_lines(path)
            return
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            for key in _WRAPPER_KEYS:
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
            else:
                data = [data]
        for item in data:
            yield item

    @staticmethod
    def _iter_lines(path: Path) -> Iterator[Dict[str, Any]]:
        with path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except ValueError:
                    logger.warning(f"Skipping unparseable line {lineno} in {path}", extra={"step": "load_dataset"})


def _register():
    register(JsonDatasetSource.source_name, JsonDatasetSource)


_register()
