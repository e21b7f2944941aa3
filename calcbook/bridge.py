"""
NotebookBridge: keeps the engine and the session store in lockstep.

Every mutation calls the engine first and only dispatches once the engine
call returned, carrying the engine's answers inside the action. A failing
engine call propagates and the store never sees the mutation.
"""

import logging
from typing import Iterable

from calcbook.engine import Engine
from calcbook.errors import EngineFault, EngineNotReady
from calcbook.state import (
    AddCell,
    Cell,
    DismissRestore,
    Loaded,
    RemoveCell,
    RestoreSession,
    Session,
    Store,
    ToggleHelp,
    Write,
)


logger = logging.getLogger(__name__)


class NotebookBridge:
    """Orchestrates engine calls and store dispatches."""

    def __init__(self, engine: Engine, store: Store):
        self.engine = engine
        self.store = store

    @property
    def state(self) -> Session:
        return self.store.state

    def read_cell(self, index: int) -> Cell:
        """Read one cell's current engine state."""
        return Cell(
            code=self.engine.read_cell_code(index),
            output=self.engine.read_cell_output(index),
            time=self.engine.read_cell_time(index),
            error=self.engine.read_cell_error(index),
        )

    def _read_cells(self, indices: Iterable[int]) -> dict[int, Cell]:
        return {i: self.read_cell(i) for i in indices}

    def _ensure_loaded(self):
        if not self.state.loaded:
            raise EngineNotReady("Notebook is not loaded yet")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def load(self) -> Session:
        """Initialize the engine and create the first cell. Runs once."""
        if self.state.loaded:
            return self.state
        self.engine.initialize()
        self.engine.insert_cell(0)
        logger.debug("Engine initialized")
        return self.store.dispatch(Loaded())

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def write(self, index: int, code: str) -> list[int]:
        """
        Write cell source and refresh every cell the engine reports.

        Returns:
            Indices the engine reported as affected
        """
        self._ensure_loaded()
        affected = list(self.engine.write_cell(index, code))
        snapshot = self._read_cells({index, *affected})
        logger.debug("write(%d) affected %s", index, affected)
        self.store.dispatch(Write(index=index, affected=tuple(affected), cells=snapshot))
        return affected

    def insert(self) -> int:
        """Append an empty cell. Returns its index."""
        self._ensure_loaded()
        new_index = len(self.state.cells)
        self.engine.insert_cell(new_index)
        logger.debug("insert(%d)", new_index)
        self.store.dispatch(AddCell())
        return new_index

    def remove(self, index: int) -> list[int]:
        """
        Remove a cell; later cells shift down.

        Returns:
            Post-shift indices whose result changed
        """
        self._ensure_loaded()
        if not 0 <= index < len(self.state.cells):
            raise EngineFault(
                f"Cell index {index} out of range (0-{len(self.state.cells) - 1})"
            )
        affected = list(self.engine.remove_cell(index))
        refreshed = self._read_cells(affected)
        logger.debug("remove(%d) affected %s", index, affected)
        self.store.dispatch(RemoveCell(index=index, refreshed=refreshed))
        return affected

    def restore_session(self) -> Session:
        """
        Rebuild the previous session in the engine, then in the store.

        Slots are recreated strictly in ascending order because slot i
        assumes slots 0..i-1 exist. Any engine failure is fatal: it
        propagates, the engine is left half-built and nothing is dispatched.
        """
        self._ensure_loaded()
        state = self.state
        previous = state.previous_session
        if not previous or state.session_restored:
            logger.debug("Nothing to restore")
            return state

        self.engine.clear_state()
        for i, code in enumerate(previous):
            self.engine.insert_cell(i)
            self.engine.write_cell(i, code)

        cells = tuple(self.read_cell(i) for i in range(len(previous)))
        logger.info("Restored previous session with %d cells", len(cells))
        return self.store.dispatch(RestoreSession(cells=cells))

    def toggle_help(self) -> Session:
        return self.store.dispatch(ToggleHelp())

    def dismiss_restore(self) -> Session:
        return self.store.dispatch(DismissRestore())
