"""
CalculationEngine: positional expression evaluator with dependency tracking.

Every cell evaluates in the namespace left behind by the cell above it. When
a cell is written, the cells below it are re-run and the engine reports which
of them actually changed, so the notebook only refreshes those.

Cells run through an IPython InteractiveShell whose user namespace is swapped
for the slot being evaluated.
"""

import ast
import builtins
import copy
import logging
import math
import numbers
import time
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Optional, Protocol

from IPython.core.displayhook import DisplayHook
from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.capture import capture_output

from calcbook.errors import EngineFault, EngineNotReady
from calcbook.formats import Representation, encode_representations


logger = logging.getLogger(__name__)


class Engine(Protocol):
    """Operations the notebook needs from an evaluation engine."""

    def initialize(self) -> None: ...

    def insert_cell(self, index: int) -> None: ...

    def write_cell(self, index: int, code: str) -> list[int]: ...

    def read_cell_code(self, index: int) -> str: ...

    def read_cell_output(self, index: int) -> str: ...

    def read_cell_time(self, index: int) -> Optional[str]: ...

    def read_cell_error(self, index: int) -> Optional[str]: ...

    def remove_cell(self, index: int) -> list[int]: ...

    def clear_state(self) -> None: ...

    def cell_count(self) -> int: ...


_SAFE_BUILTINS = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "divmod", "float", "int", "len",
        "list", "max", "min", "pow", "print", "range", "round", "set", "sorted",
        "str", "sum", "tuple", "zip",
    )
}


def _base_namespace() -> dict:
    """Namespace seen by the first cell: math functions and constants."""
    ns = {
        name: getattr(math, name)
        for name in dir(math)
        if not name.startswith("_")
    }
    ns["__builtins__"] = _SAFE_BUILTINS
    return ns


def _value_formats(value: Any) -> list[Representation]:
    """All representations the engine offers for a value."""
    if value is None:
        return [Representation(value="Nothing", name="Exact")]

    formats = []
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        formats.append(Representation(value=str(value), name="Exact"))
        try:
            approx = float(value)
        except OverflowError:
            approx = None
        if approx is not None:
            formats.append(Representation(value=format(approx, ".6g"), name="Approx"))
            formats.append(Representation(value=format(approx, ".3e"), name="Scientific"))
    elif isinstance(value, (bool, str)):
        formats.append(Representation(value=str(value), name="Exact"))
    else:
        formats.append(Representation(value=repr(value), name="Exact"))

    formats.append(Representation(value=f"{type(value).__name__}: {value!r}", name="Debug"))
    return formats


def _read_names(tree: ast.AST) -> frozenset:
    """Names a piece of code loads."""
    return frozenset(
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Load)
    )


def _same_value(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if type(old) is not type(new):
        return False
    if isinstance(old, float) and math.isnan(old) and math.isnan(new):
        return True
    try:
        return bool(old == new)
    except Exception:
        return False


def _changed_names(before: dict, after: dict) -> set[str]:
    """Names bound differently in two namespaces."""
    changed = set()
    for name in before.keys() | after.keys():
        if name.startswith("__"):
            continue
        if name not in before or name not in after:
            changed.add(name)
        elif not _same_value(before[name], after[name]):
            changed.add(name)
    return changed


def _copy_namespace(namespace: dict) -> dict:
    """
    Copy a namespace for the next slot.

    Values are deep-copied so a cell mutating an object (``a.append(1)``)
    never changes what the cells above it bound.
    """
    copied = {}
    for name, value in namespace.items():
        if name.startswith("__") or isinstance(value, ModuleType):
            copied[name] = value
            continue
        try:
            copied[name] = copy.deepcopy(value)
        except Exception:
            # Uncopyable values are shared
            copied[name] = value
    return copied


@dataclass
class EvaluationResult:
    """Result of evaluating one cell."""
    success: bool
    formats: list[Representation] = field(default_factory=list)
    error: Optional[str] = None
    runtime_ms: float = 0.0
    printed: str = ""
    value: Any = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "formats": [{"value": f.value, "name": f.name} for f in self.formats],
            "error": self.error,
            "runtime_ms": self.runtime_ms,
            "printed": self.printed,
        }

    def same_display(self, other: Optional["EvaluationResult"]) -> bool:
        """Whether two results render identically (timing aside)."""
        if other is None:
            return not self.formats and self.error is None
        return self.formats == other.formats and self.error == other.error


class _ValueHook(DisplayHook):
    """Display hook that records the trailing expression value without printing it."""

    def __call__(self, result=None):
        if result is not None:
            self.fill_exec_result(result)


_shell: Optional[InteractiveShell] = None


def get_shell() -> InteractiveShell:
    """IPython shell shared by every engine."""
    global _shell
    if _shell is None:
        _shell = InteractiveShell(displayhook_class=_ValueHook)
    return _shell


def _assigned_name(code: str) -> Optional[str]:
    """Name bound by a trailing assignment, if the cell ends with one."""
    try:
        body = ast.parse(code).body
    except SyntaxError:
        return None
    last = body[-1] if body else None
    if isinstance(last, ast.Assign):
        target = last.targets[-1]
    elif isinstance(last, (ast.AugAssign, ast.AnnAssign)):
        target = last.target
    else:
        return None
    return target.id if isinstance(target, ast.Name) else None


def _describe_error(error: BaseException) -> str:
    if isinstance(error, SyntaxError):
        return f"{type(error).__name__}: {error.msg} (line {error.lineno})"
    return f"{type(error).__name__}: {error}"


def evaluate(code: str, namespace: dict) -> EvaluationResult:
    """
    Evaluate cell source inside `namespace`, updating it in place.

    A trailing expression is the cell value; a trailing assignment to a name
    yields the assigned value.

    Args:
        code: Cell source
        namespace: Globals for the evaluation

    Returns:
        EvaluationResult with representations or an error report
    """
    start = time.perf_counter()

    if not code.strip():
        return EvaluationResult(success=True, runtime_ms=(time.perf_counter() - start) * 1000)

    shell = get_shell()
    shell.init_create_namespaces(user_ns=namespace)

    with capture_output() as captured:
        result = shell.run_cell(code, silent=False)

    runtime_ms = (time.perf_counter() - start) * 1000

    error = result.error_before_exec or result.error_in_exec
    if error is not None:
        return EvaluationResult(success=False, error=_describe_error(error), runtime_ms=runtime_ms)

    printed = captured.stdout.rstrip("\n")
    if result.result is not None:
        value = result.result
    else:
        name = _assigned_name(code)
        value = namespace.get(name) if name else None

    formats = _value_formats(value)
    if printed:
        formats.append(Representation(value=printed, name="Printed"))

    return EvaluationResult(
        success=True,
        formats=formats,
        runtime_ms=runtime_ms,
        printed=printed,
        value=value,
    )


@dataclass
class _Slot:
    """Engine-side state of one cell."""
    source: str = ""
    namespace: dict = field(default_factory=dict)
    reads: frozenset = frozenset()
    result: Optional[EvaluationResult] = None


class CalculationEngine:
    """
    Reference engine for the notebook.

    Slots are positional: slot i evaluates in the namespace produced by
    slot i-1 (slot 0 starts from the math namespace). The engine is
    synchronous and not reentrant.
    """

    def __init__(self):
        self._slots: list[_Slot] = []
        self._initialized = False
        self._base = _base_namespace()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def initialize(self):
        """Prepare an empty engine. Safe to call more than once."""
        self._slots.clear()
        self._initialized = True

    @property
    def initialized(self) -> bool:
        return self._initialized

    def clear_state(self):
        """Drop every slot."""
        self._slots.clear()

    def cell_count(self) -> int:
        return len(self._slots)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def insert_cell(self, index: int):
        """Insert an empty slot at `index` (0 <= index <= count)."""
        self._ensure_ready()
        if not 0 <= index <= len(self._slots):
            raise EngineFault(
                f"Cannot insert cell at {index} (0-{len(self._slots)})"
            )
        # An empty cell passes its input namespace through unchanged
        slot = _Slot(namespace=_copy_namespace(self._input_namespace(index)))
        self._slots.insert(index, slot)
        logger.debug("Inserted cell %d", index)

    def write_cell(self, index: int, code: str) -> list[int]:
        """
        Replace the source of a cell and re-run what depends on it.

        Returns:
            The written index followed by every later index whose displayed
            result may have changed
        """
        slot = self._slot(index)
        before = slot.namespace
        slot.source = code
        self._run(index)
        affected = [index] + self._propagate(index + 1, before)
        logger.debug("Wrote cell %d, affected %s", index, affected)
        return affected

    def remove_cell(self, index: int) -> list[int]:
        """
        Remove a slot; later slots shift down by one.

        Returns:
            Post-shift indices whose displayed result changed
        """
        removed = self._slot(index)
        self._slots.pop(index)
        affected = self._propagate(index, removed.namespace)
        logger.debug("Removed cell %d, affected %s", index, affected)
        return affected

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def read_cell_code(self, index: int) -> str:
        return self._slot(index).source

    def read_cell_formats(self, index: int) -> list[Representation]:
        """Structured representations of a cell result."""
        result = self._slot(index).result
        if result is None or not result.success:
            return []
        return list(result.formats)

    def read_cell_output(self, index: int) -> str:
        """Representations encoded as value###name%%%... (empty on error)."""
        return encode_representations(self.read_cell_formats(index))

    def read_cell_time(self, index: int) -> Optional[str]:
        result = self._slot(index).result
        if result is None:
            return None
        return f"{int(result.runtime_ms)} ms"

    def read_cell_error(self, index: int) -> Optional[str]:
        result = self._slot(index).result
        return result.error if result is not None else None

    def get_namespace(self, index: int) -> dict:
        """User-visible names bound after cell `index` ran."""
        ns = self._slot(index).namespace
        return {
            k: v for k, v in ns.items()
            if not k.startswith("_") and self._base.get(k) is not v
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _ensure_ready(self):
        if not self._initialized:
            raise EngineNotReady("Engine is not initialized")

    def _slot(self, index: int) -> _Slot:
        self._ensure_ready()
        if not 0 <= index < len(self._slots):
            raise EngineFault(
                f"Cell index {index} out of range (0-{len(self._slots) - 1})"
            )
        return self._slots[index]

    def _input_namespace(self, index: int) -> dict:
        if index == 0:
            return self._base
        return self._slots[index - 1].namespace

    def _run(self, index: int):
        slot = self._slots[index]
        namespace = _copy_namespace(self._input_namespace(index))
        result = evaluate(slot.source, namespace)
        try:
            slot.reads = _read_names(ast.parse(slot.source))
        except SyntaxError:
            slot.reads = frozenset()
        slot.namespace = namespace
        slot.result = result

    def _propagate(self, start: int, before: dict) -> list[int]:
        """
        Re-run slots from `start` after their input namespace changed.

        `before` is the namespace slot `start` used to see. Stops as soon as
        a slot's input is unchanged, since nothing below it can differ.
        """
        affected = []
        for j in range(start, len(self._slots)):
            slot = self._slots[j]
            changed = _changed_names(before, self._input_namespace(j))
            if not changed:
                break
            before = slot.namespace
            old_result = slot.result
            self._run(j)
            if slot.reads & changed or not slot.result.same_display(old_result):
                affected.append(j)
        return affected
