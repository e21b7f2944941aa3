"""
Exception hierarchy for calcbook.
"""


class CalcbookError(Exception):
    """Base class for every error raised by calcbook."""


class EngineFault(CalcbookError):
    """An engine call failed or was given a malformed cell index."""


class EngineNotReady(EngineFault):
    """The engine (or the session on top of it) has not been loaded yet."""


class StorageFault(CalcbookError):
    """Reading from or writing to durable storage failed."""
