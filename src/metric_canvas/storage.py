"""Key/value backends for persisted canvas state.

The store only needs the three calls a browser's local storage offers, so a
backend is anything with ``get_item``, ``set_item`` and ``remove_item``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional, Protocol


# --- Constants ---
STORAGE_DIR = Path(
    os.environ.get("METRIC_CANVAS_STORAGE_DIR", Path.home() / ".metric-canvas" / "state")
)


class CanvasStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage.  Handy for tests and throwaway canvases."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """One JSON file per storage key inside ``directory``."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else STORAGE_DIR

    def _path_for(self, key: str) -> Path:
        safe_name = re.sub(r"[^\w\-.]", "_", key) or "_"
        return self.directory / f"{safe_name}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path_for(key).write_text(value, encoding="utf-8")

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)
