"""
Tests for NotebookBridge: engine calls happen first, dispatch second.
"""

import pytest

from calcbook.bridge import NotebookBridge
from calcbook.engine import CalculationEngine
from calcbook.errors import EngineFault, EngineNotReady
from calcbook.formats import parse_output
from calcbook.state import SessionSnapshot, Store


@pytest.fixture
def bridge(fake_engine):
    b = NotebookBridge(fake_engine, Store())
    b.load()
    return b


@pytest.fixture
def real_bridge():
    b = NotebookBridge(CalculationEngine(), Store())
    b.load()
    return b


def value_of(bridge, index):
    return parse_output(bridge.state.cells[index].output)[0].value


class TestLoad:

    def test_load_initializes_and_inserts_first_cell(self, fake_engine):
        bridge = NotebookBridge(fake_engine, Store())
        bridge.load()
        assert fake_engine.mutations() == [("initialize", None), ("insert_cell", 0)]
        assert bridge.state.loaded
        assert len(bridge.state.cells) == 1

    def test_load_twice_is_noop(self, bridge, fake_engine):
        calls = len(fake_engine.calls)
        bridge.load()
        assert len(fake_engine.calls) == calls
        assert len(bridge.state.cells) == 1

    def test_mutations_before_load_are_rejected(self, fake_engine):
        bridge = NotebookBridge(fake_engine, Store())
        with pytest.raises(EngineNotReady):
            bridge.write(0, "1")
        with pytest.raises(EngineNotReady):
            bridge.insert()
        with pytest.raises(EngineNotReady):
            bridge.remove(0)
        assert fake_engine.calls == []

    def test_failed_initialize_dispatches_nothing(self, fake_engine):
        fake_engine.fail_on.add("initialize")
        store = Store()
        bridge = NotebookBridge(fake_engine, store)
        with pytest.raises(EngineFault):
            bridge.load()
        assert store.state.loaded is False


class TestWrite:

    def test_write_updates_code_and_output(self, bridge):
        bridge.write(0, "x = 5")
        cell = bridge.state.cells[0]
        assert cell.code == "x = 5"
        assert cell.output == "<x = 5>###Exact"
        assert cell.time == "1 ms"

    def test_write_returns_engine_affected(self, bridge, fake_engine):
        bridge.insert()
        fake_engine.affected[0] = [0, 1]
        assert bridge.write(0, "x = 1") == [0, 1]

    def test_only_affected_cells_are_reread(self, bridge, fake_engine):
        bridge.insert()
        bridge.insert()
        fake_engine.affected[0] = [0, 2]
        fake_engine.calls.clear()
        bridge.write(0, "a")
        read_indices = {c[1] for c in fake_engine.calls if c[0].startswith("read_")}
        assert read_indices == {0, 2}

    def test_failed_write_does_not_dispatch(self, bridge, fake_engine):
        fake_engine.fail_on.add("write_cell")
        before = bridge.state
        with pytest.raises(EngineFault):
            bridge.write(0, "x")
        assert bridge.state is before

    def test_write_out_of_range(self, bridge):
        before = bridge.state
        with pytest.raises(EngineFault):
            bridge.write(3, "x")
        assert bridge.state is before


class TestInsertRemove:

    def test_insert_calls_engine_before_dispatch(self, fake_engine):
        store = Store()
        bridge = NotebookBridge(fake_engine, store)
        bridge.load()
        lengths = []
        store.subscribe(lambda s: lengths.append((fake_engine.cell_count(), len(s.cells))))
        bridge.insert()
        assert lengths == [(2, 2)]

    def test_insert_returns_new_index(self, bridge):
        assert bridge.insert() == 1
        assert bridge.insert() == 2
        assert len(bridge.state.cells) == 3

    def test_failed_insert_does_not_dispatch(self, bridge, fake_engine):
        fake_engine.fail_on.add("insert_cell")
        with pytest.raises(EngineFault):
            bridge.insert()
        assert len(bridge.state.cells) == 1

    def test_remove_shifts(self, bridge):
        bridge.insert()
        bridge.insert()
        bridge.write(1, "b")
        bridge.write(2, "c")
        bridge.remove(1)
        assert [c.code for c in bridge.state.cells] == ["", "c"]

    def test_remove_last_cell(self, bridge):
        bridge.remove(0)
        assert bridge.state.cells == ()

    def test_remove_out_of_range_never_reaches_store(self, bridge, fake_engine):
        before = bridge.state
        fake_engine.calls.clear()
        with pytest.raises(EngineFault):
            bridge.remove(1)
        assert bridge.state is before
        assert fake_engine.calls == []

    def test_failed_remove_does_not_dispatch(self, bridge, fake_engine):
        fake_engine.fail_on.add("remove_cell")
        with pytest.raises(EngineFault):
            bridge.remove(0)
        assert len(bridge.state.cells) == 1

    def test_lengths_stay_in_sync(self, bridge, fake_engine):
        for _ in range(4):
            bridge.insert()
        bridge.remove(2)
        bridge.remove(0)
        bridge.insert()
        assert len(bridge.state.cells) == fake_engine.cell_count() == 4


class TestRestore:

    def _with_snapshot(self, fake_engine, sources):
        store = Store()
        store.dispatch(SessionSnapshot(previous_session=sources))
        bridge = NotebookBridge(fake_engine, store)
        bridge.load()
        return bridge

    def test_restore_call_order(self, fake_engine):
        bridge = self._with_snapshot(fake_engine, ("a", "b"))
        fake_engine.calls.clear()
        bridge.restore_session()
        assert fake_engine.mutations() == [
            ("clear_state", None),
            ("insert_cell", 0),
            ("write_cell", 0),
            ("insert_cell", 1),
            ("write_cell", 1),
        ]

    def test_restore_populates_cells(self, fake_engine):
        bridge = self._with_snapshot(fake_engine, ("10 m", ""))
        state = bridge.restore_session()
        assert state.session_restored
        assert [c.code for c in state.cells] == ["10 m", ""]
        assert state.cells[0].output == "<10 m>###Exact"

    def test_second_restore_is_noop(self, fake_engine):
        bridge = self._with_snapshot(fake_engine, ("a",))
        first = bridge.restore_session()
        fake_engine.calls.clear()
        second = bridge.restore_session()
        assert second is first
        assert fake_engine.calls == []

    def test_nothing_to_restore(self, fake_engine):
        bridge = self._with_snapshot(fake_engine, ())
        fake_engine.calls.clear()
        bridge.restore_session()
        assert fake_engine.calls == []
        assert not bridge.state.session_restored

    def test_engine_failure_is_fatal(self, fake_engine):
        bridge = self._with_snapshot(fake_engine, ("a", "b"))
        before = bridge.state
        fake_engine.fail_on.add("write_cell")
        with pytest.raises(EngineFault):
            bridge.restore_session()
        assert bridge.state is before
        assert not bridge.state.session_restored


class TestHelpAndDismiss:

    def test_toggle_help_does_not_touch_engine(self, bridge, fake_engine):
        fake_engine.calls.clear()
        bridge.toggle_help()
        assert bridge.state.help_open
        assert fake_engine.calls == []

    def test_dismiss_restore(self, bridge):
        bridge.dismiss_restore()
        assert bridge.state.restore_dismissed


class TestWithCalculationEngine:

    def test_dependency_scenario(self, real_bridge):
        real_bridge.insert()
        assert real_bridge.write(0, "x = 5") == [0]
        assert real_bridge.write(1, "x * 2") == [1]
        assert value_of(real_bridge, 1) == "10"

        cell_1 = real_bridge.state.cells[1]
        assert real_bridge.write(0, "x = 9") == [0, 1]
        assert value_of(real_bridge, 1) == "18"
        assert real_bridge.state.cells[1] is not cell_1

    def test_untouched_cells_are_identical(self, real_bridge):
        real_bridge.insert()
        real_bridge.insert()
        real_bridge.write(0, "x = 1")
        real_bridge.write(1, "y = 2")
        real_bridge.write(2, "x + 1")
        cell_1 = real_bridge.state.cells[1]
        real_bridge.write(0, "x = 4")
        assert real_bridge.state.cells[1] is cell_1
        assert value_of(real_bridge, 2) == "5"

    def test_remove_refreshes_shifted_dependents(self, real_bridge):
        real_bridge.insert()
        real_bridge.insert()
        real_bridge.write(0, "x = 1")
        real_bridge.write(1, "x = 2")
        real_bridge.write(2, "x * 10")
        assert value_of(real_bridge, 2) == "20"
        real_bridge.remove(1)
        assert len(real_bridge.state.cells) == 2
        assert value_of(real_bridge, 1) == "10"

    def test_error_surfaces_in_cell(self, real_bridge):
        real_bridge.write(0, "1 / 0")
        cell = real_bridge.state.cells[0]
        assert cell.output == ""
        assert cell.error.startswith("ZeroDivisionError")

    def test_restore_rebuilds_engine(self):
        store = Store()
        store.dispatch(SessionSnapshot(previous_session=("x = 2", "x ** 3")))
        engine = CalculationEngine()
        bridge = NotebookBridge(engine, store)
        bridge.load()
        bridge.restore_session()
        assert engine.cell_count() == 2
        assert value_of(bridge, 1) == "8"
