"""
Registry of named spreadsheet instances.

An instance is loaded from disk at most once and then held in memory for
the life of the process. Callers mutate ``instance.grid`` while holding
``instance.lock`` and call ``save()`` afterwards.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from django.conf import settings

from .grid import DEFAULT_COLS, DEFAULT_ROWS, Grid
from .storage import SheetStore, instance_path

logger = logging.getLogger(__name__)

DEFAULT_INSTANCE = 'default'


class SheetInstance:
    """A named grid and the files it persists to."""

    def __init__(self, name: str, store: SheetStore, folder: Union[str, Path, None] = None):
        self.name = name
        self.store = store
        # root for files named by ingest/dump
        self.folder = Path(folder) if folder is not None else store.path.parent
        self.grid: Optional[Grid] = None
        self.loaded = False
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self.store.path

    def load(self):
        """Read from disk. The in-memory grid is only swapped after a successful read."""
        grid = self.store.load()
        self.grid = grid
        self.loaded = True

    def ensure_loaded(self) -> Grid:
        if not self.loaded:
            self.load()
        return self.grid

    def save(self):
        self.store.save(self.grid)

    def replace(self, grid: Grid):
        self.grid = grid
        self.loaded = True

    def reset(self):
        self.replace(Grid.empty(self.store.default_rows, self.store.default_cols))


class SheetRegistry:
    """Maps instance names to SheetInstance handles."""

    def __init__(self, folder: Union[str, Path, None] = None,
                 default_rows: Optional[int] = None, default_cols: Optional[int] = None):
        self.folder = Path(folder or settings.SPREADSHEET_FOLDER)
        self.default_rows = default_rows or getattr(settings, 'SPREADSHEET_DEFAULT_ROWS', DEFAULT_ROWS)
        self.default_cols = default_cols or getattr(settings, 'SPREADSHEET_DEFAULT_COLS', DEFAULT_COLS)
        self._instances: Dict[str, SheetInstance] = {}
        self._lock = threading.Lock()

    def get(self, name: Optional[str] = None) -> SheetInstance:
        name = name or DEFAULT_INSTANCE
        with self._lock:
            instance = self._instances.get(name)
            if instance is None:
                store = SheetStore(
                    instance_path(name, self.folder),
                    default_rows=self.default_rows,
                    default_cols=self.default_cols,
                )
                instance = SheetInstance(name, store, self.folder)
                self._instances[name] = instance
                logger.debug("Registered sheet instance %r -> %s", name, store.path)
            return instance

