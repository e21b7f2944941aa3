"""
Output representations: parsing and selecting the renderings of a cell result.

A computed answer can be shown in several equivalent ways (exact, approximate,
scientific...). The engine hands them over as one string:

    value###name%%%value###name%%%...

Segments are separated by ``%%%``; ``###name`` is optional and an unnamed
segment is the default rendering. The user picks one by name without
re-evaluating anything.
"""

from dataclasses import dataclass
from typing import Iterable, Optional


SEGMENT_SEPARATOR = "%%%"
NAME_SEPARATOR = "###"


@dataclass(frozen=True)
class Representation:
    """One rendering of a cell result."""
    value: str
    name: Optional[str] = None

    def label(self) -> str:
        """Name to show in a format picker."""
        return self.name if self.name else "default"


def parse_output(output: str) -> list[Representation]:
    """
    Split an encoded output string into its representations.

    Engine order is preserved. Empty segments (a trailing separator, or an
    empty output) are dropped.

    Args:
        output: Encoded output as returned by ``read_cell_output``

    Returns:
        Ordered list of representations
    """
    representations = []
    for segment in output.split(SEGMENT_SEPARATOR):
        if not segment:
            continue
        value, sep, name = segment.partition(NAME_SEPARATOR)
        representations.append(Representation(value=value, name=name if sep else None))
    return representations


def encode_representations(representations: Iterable[Representation]) -> str:
    """Inverse of parse_output."""
    segments = []
    for rep in representations:
        if rep.name:
            segments.append(f"{rep.value}{NAME_SEPARATOR}{rep.name}")
        else:
            segments.append(rep.value)
    return SEGMENT_SEPARATOR.join(segments)


def select_representation(
    representations: list[Representation], name: Optional[str] = None
) -> Optional[Representation]:
    """
    Pick the active representation.

    The first representation whose name matches wins. Without a name, or
    when nothing matches, the first representation is the default.
    Returns None only when there is nothing to show.
    """
    if not representations:
        return None
    if name is not None:
        for rep in representations:
            if rep.name == name:
                return rep
    return representations[0]


class FormatSelector:
    """
    Presentation state for one cell's output.

    Holds the parsed representations and the name the user picked. The
    selection survives output refreshes (a new value is shown in the same
    format when that format still exists) but is never persisted.
    """

    def __init__(self, output: str = ""):
        self.representations = parse_output(output)
        self.selected: Optional[str] = None

    def update(self, output: str):
        """Replace the representations after the cell was re-evaluated."""
        self.representations = parse_output(output)

    def select(self, name: Optional[str]) -> Optional[Representation]:
        """Select a representation by label (see `names`) and return the active one."""
        self.selected = name
        return self.active

    def reset(self):
        """Go back to the default representation."""
        self.selected = None

    @property
    def active(self) -> Optional[Representation]:
        for rep in self.representations:
            if rep.label() == self.selected:
                return rep
        return select_representation(self.representations)

    def names(self) -> list[str]:
        """Labels of all available representations, in engine order."""
        return [rep.label() for rep in self.representations]
