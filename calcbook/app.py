"""
NotebookApp: wires engine, store, bridge and persistence together.
"""

import logging
from typing import Optional

from calcbook.bridge import NotebookBridge
from calcbook.engine import CalculationEngine, Engine
from calcbook.formats import FormatSelector, Representation
from calcbook.persistence import MemoryStorage, PersistenceAdapter, Storage
from calcbook.state import Session, Store, restore_offered


logger = logging.getLogger(__name__)


class NotebookApp:
    """
    One notebook session from startup to shutdown.

    Startup order: take the storage snapshot, attach write-through
    persistence, then load the engine (`start`). Format selections are
    per-cell presentation state and are never persisted.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        storage: Optional[Storage] = None,
        persist: bool = True,
    ):
        self.engine = engine or CalculationEngine()
        self.storage = storage if storage is not None else MemoryStorage()
        self.store = Store()
        self.bridge = NotebookBridge(self.engine, self.store)
        self.persistence = PersistenceAdapter(self.storage)
        self._selectors: list[FormatSelector] = []

        self.persistence.take_snapshot(self.store)
        self._detach = self.persistence.attach(self.store) if persist else None
        self.store.subscribe(self._sync_selectors)

    @property
    def state(self) -> Session:
        return self.store.state

    def start(self) -> Session:
        """Load the engine. Idempotent."""
        return self.bridge.load()

    def close(self):
        """Stop writing through to storage."""
        if self._detach is not None:
            self._detach()
            self._detach = None

    def restore_offered(self) -> bool:
        return restore_offered(self.state)

    # ------------------------------------------------------------------ #
    # Cell operations
    # ------------------------------------------------------------------ #

    def write(self, index: int, code: str) -> list[int]:
        return self.bridge.write(index, code)

    def insert(self) -> int:
        return self.bridge.insert()

    def remove(self, index: int) -> list[int]:
        self._sync_selectors(self.state)
        selectors = list(self._selectors)
        affected = self.bridge.remove(index)
        # Selections follow their cells through the shift
        del selectors[index]
        self._selectors = selectors
        self._sync_selectors(self.state)
        return affected

    def restore_session(self) -> Session:
        before = self.state
        state = self.bridge.restore_session()
        if state is not before:
            self._selectors = []
            self._sync_selectors(state)
        return state

    def dismiss_restore(self) -> Session:
        return self.bridge.dismiss_restore()

    def toggle_help(self) -> Session:
        return self.bridge.toggle_help()

    # ------------------------------------------------------------------ #
    # Output formats
    # ------------------------------------------------------------------ #

    def selector(self, index: int) -> FormatSelector:
        """Format selector for cell `index`."""
        self._sync_selectors(self.state)
        return self._selectors[index]

    def select_format(self, index: int, name: Optional[str]) -> Optional[Representation]:
        """Pick a representation for one cell; unknown names fall back to the default."""
        return self.selector(index).select(name)

    def active_representation(self, index: int) -> Optional[Representation]:
        return self.selector(index).active

    def _sync_selectors(self, state: Session):
        """Keep one selector per cell, refreshed from the cell output."""
        del self._selectors[len(state.cells):]
        while len(self._selectors) < len(state.cells):
            self._selectors.append(FormatSelector())
        for selector, cell in zip(self._selectors, state.cells):
            selector.update(cell.output)
