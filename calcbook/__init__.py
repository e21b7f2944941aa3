"""
calcbook: a reactive calculation notebook.

This package provides the session controller of a calculation notebook:
- Cells are evaluated by an engine that knows which cells depend on which
- Editing a cell refreshes exactly the cells whose value depends on it
- Cell sources are persisted and the previous session can be restored
- Results carry several representations the user can switch between
"""

from calcbook.errors import CalcbookError, EngineFault, EngineNotReady, StorageFault
from calcbook.formats import FormatSelector, Representation, parse_output, select_representation
from calcbook.state import Cell, Session, Store, reduce
from calcbook.engine import CalculationEngine, EvaluationResult
from calcbook.bridge import NotebookBridge
from calcbook.persistence import FileStorage, MemoryStorage, PersistenceAdapter
from calcbook.app import NotebookApp

__version__ = "0.1.0"
__all__ = [
    "CalcbookError",
    "EngineFault",
    "EngineNotReady",
    "StorageFault",
    "FormatSelector",
    "Representation",
    "parse_output",
    "select_representation",
    "Cell",
    "Session",
    "Store",
    "reduce",
    "CalculationEngine",
    "EvaluationResult",
    "NotebookBridge",
    "FileStorage",
    "MemoryStorage",
    "PersistenceAdapter",
    "NotebookApp",
]
