"""Pytest fixtures shared across all test modules."""

import pytest

from calcbook import NotebookApp, MemoryStorage
from calcbook.errors import EngineFault, EngineNotReady


class FakeEngine:
    """
    Scripted engine: records calls, returns configured affected sets.

    `affected` maps a written index to the list write_cell returns (default:
    just the index). Method names in `fail_on` raise EngineFault.
    """

    def __init__(self):
        self.slots: list[dict] = []
        self.calls: list[tuple] = []
        self.affected: dict[int, list[int]] = {}
        self.fail_on: set[str] = set()
        self.initialized = False

    def _check(self, name: str, index=None, size=None):
        self.calls.append((name, index))
        if name in self.fail_on:
            raise EngineFault(f"{name} failed")
        if not self.initialized and name != "initialize":
            raise EngineNotReady("not initialized")
        if index is not None:
            limit = len(self.slots) if size is None else size
            if not 0 <= index < limit:
                raise EngineFault(f"Cell index {index} out of range")

    def initialize(self):
        self._check("initialize")
        self.initialized = True
        self.slots.clear()

    def insert_cell(self, index):
        self._check("insert_cell", index, size=len(self.slots) + 1)
        self.slots.insert(index, {"code": "", "output": "", "time": None})

    def write_cell(self, index, code):
        self._check("write_cell", index)
        self.slots[index] = {"code": code, "output": f"<{code}>###Exact", "time": "1 ms"}
        return list(self.affected.get(index, [index]))

    def read_cell_code(self, index):
        self._check("read_cell_code", index)
        return self.slots[index]["code"]

    def read_cell_output(self, index):
        self._check("read_cell_output", index)
        return self.slots[index]["output"]

    def read_cell_time(self, index):
        self._check("read_cell_time", index)
        return self.slots[index]["time"]

    def read_cell_error(self, index):
        self._check("read_cell_error", index)
        return None

    def remove_cell(self, index):
        self._check("remove_cell", index)
        self.slots.pop(index)
        return []

    def clear_state(self):
        self._check("clear_state")
        self.slots.clear()

    def cell_count(self):
        return len(self.slots)

    def mutations(self) -> list[tuple]:
        """Calls that change engine state, in order."""
        reads = {"read_cell_code", "read_cell_output", "read_cell_time", "read_cell_error"}
        return [c for c in self.calls if c[0] not in reads]


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def app(storage):
    """A started NotebookApp on the real engine with in-memory storage."""
    notebook = NotebookApp(storage=storage)
    notebook.start()
    return notebook
