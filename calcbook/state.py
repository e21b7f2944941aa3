"""
Session state: immutable cell/session models, the action set and the reducer.

The reducer is a pure function of (state, action). It never talks to the
engine; everything the engine computed travels inside the action. The Store
is the only mutable piece: it keeps the current Session and notifies
subscribers after each transition.
"""

import logging
from typing import Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)


class Cell(BaseModel):
    """A single notebook row. Identity is its position in Session.cells."""
    model_config = ConfigDict(frozen=True)

    code: str = ""
    output: str = ""
    time: Optional[str] = None
    error: Optional[str] = None

    def has_result(self) -> bool:
        return bool(self.output or self.error)


class Session(BaseModel):
    """
    Full notebook state.

    - cells: ordered cells, index i matches engine slot i
    - loaded: engine is ready and the first cell exists
    - help_open: help panel visibility
    - previous_session: sources found in storage at startup; None until the
      startup snapshot has been taken, () when there is nothing to restore
    - session_restored: the previous session was restored (at most once)
    - restore_dismissed: the user declined the restore offer
    """
    model_config = ConfigDict(frozen=True)

    cells: tuple[Cell, ...] = ()
    loaded: bool = False
    help_open: bool = False
    previous_session: Optional[tuple[str, ...]] = None
    session_restored: bool = False
    restore_dismissed: bool = False


# ------------------------------------------------------------------ #
# Actions
# ------------------------------------------------------------------ #

class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class Write(_Action):
    """Cell `index` was written; `cells` holds engine reads for index and affected."""
    type: Literal["write"] = "write"
    index: int
    affected: tuple[int, ...] = ()
    cells: dict[int, Cell] = Field(default_factory=dict)


class Loaded(_Action):
    type: Literal["loaded"] = "loaded"


class AddCell(_Action):
    type: Literal["add_cell"] = "add_cell"


class RemoveCell(_Action):
    """Remove slot `index`; `refreshed` maps post-shift indices to re-read cells."""
    type: Literal["remove_cell"] = "remove_cell"
    index: int
    refreshed: dict[int, Cell] = Field(default_factory=dict)


class RestoreSession(_Action):
    """Replace all cells with the re-evaluated previous session."""
    type: Literal["restore_session"] = "restore_session"
    cells: tuple[Cell, ...] = ()


class ToggleHelp(_Action):
    type: Literal["toggle_help"] = "toggle_help"


class SessionSnapshot(_Action):
    """Record what storage held at startup."""
    type: Literal["session_snapshot"] = "session_snapshot"
    previous_session: tuple[str, ...] = ()


class DismissRestore(_Action):
    type: Literal["dismiss_restore"] = "dismiss_restore"


Action = Union[
    Write, Loaded, AddCell, RemoveCell, RestoreSession, ToggleHelp,
    SessionSnapshot, DismissRestore,
]


# ------------------------------------------------------------------ #
# Reducer
# ------------------------------------------------------------------ #

def initial_state() -> Session:
    """State at process start: no cells, nothing loaded, no snapshot yet."""
    return Session()


def restore_offered(state: Session) -> bool:
    """Whether the UI should offer to restore the previous session."""
    return (
        state.loaded
        and bool(state.previous_session)
        and not state.session_restored
        and not state.restore_dismissed
    )


def _apply_write(state: Session, action: Write) -> Session:
    cells = list(state.cells)
    touched = [action.index] + [i for i in action.affected if i != action.index]

    for i in touched:
        if not 0 <= i < len(cells) or i not in action.cells:
            continue
        fresh = action.cells[i]
        old = cells[i]
        if i in action.affected:
            update = {"output": fresh.output, "time": fresh.time, "error": fresh.error}
            if i == action.index:
                update["code"] = fresh.code
            new = old.model_copy(update=update)
        else:
            new = old.model_copy(update={"code": fresh.code})
        # Keep the old object when nothing changed
        if new != old:
            cells[i] = new

    if all(new is old for new, old in zip(cells, state.cells)):
        return state
    return state.model_copy(update={"cells": tuple(cells)})


def _apply_remove(state: Session, action: RemoveCell) -> Session:
    if not 0 <= action.index < len(state.cells):
        return state
    cells = [c for i, c in enumerate(state.cells) if i != action.index]
    for i, fresh in action.refreshed.items():
        if 0 <= i < len(cells) and cells[i] != fresh:
            cells[i] = fresh
    return state.model_copy(update={"cells": tuple(cells)})


def reduce(state: Session, action: Action) -> Session:
    """
    Compute the next session state.

    Total over the action set: actions that are not valid in the current
    state return `state` itself unchanged.
    """
    if isinstance(action, Write):
        if not 0 <= action.index < len(state.cells):
            return state
        return _apply_write(state, action)

    elif isinstance(action, Loaded):
        if state.loaded:
            return state
        return state.model_copy(update={"cells": (Cell(),), "loaded": True})

    elif isinstance(action, AddCell):
        return state.model_copy(update={"cells": state.cells + (Cell(),)})

    elif isinstance(action, RemoveCell):
        return _apply_remove(state, action)

    elif isinstance(action, RestoreSession):
        if (
            not state.loaded
            or not state.previous_session
            or state.session_restored
        ):
            return state
        return state.model_copy(update={
            "cells": tuple(action.cells),
            "session_restored": True,
        })

    elif isinstance(action, ToggleHelp):
        return state.model_copy(update={"help_open": not state.help_open})

    elif isinstance(action, SessionSnapshot):
        if state.previous_session is not None:
            return state
        return state.model_copy(update={"previous_session": tuple(action.previous_session)})

    elif isinstance(action, DismissRestore):
        if state.restore_dismissed:
            return state
        return state.model_copy(update={"restore_dismissed": True})

    return state


# ------------------------------------------------------------------ #
# Store
# ------------------------------------------------------------------ #

Listener = Callable[[Session], None]


class Store:
    """
    Holds the current Session and dispatches actions through `reduce`.

    Listeners are called synchronously after every transition that produced
    a new state. Ignored actions do not notify.
    """

    def __init__(self, state: Optional[Session] = None):
        self._state = state if state is not None else initial_state()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> Session:
        return self._state

    def dispatch(self, action: Action) -> Session:
        """Apply an action and return the resulting state."""
        new_state = reduce(self._state, action)
        if new_state is self._state:
            logger.debug("Ignored action %s", action.type)
            return self._state

        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
        return new_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
