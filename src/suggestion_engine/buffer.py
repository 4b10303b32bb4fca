"""Document buffer interface consumed by the appliers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import ContextManager, Iterator, List, Optional, Protocol, Sequence

from . import types


class EditorUnavailableError(RuntimeError):
    """Raised when the live document is not ready to be read or written."""


class DocumentBuffer(Protocol):
    def get_text(self) -> str:  # pragma: no cover - protocol
        ...

    def replace_range(self, start: int, end: int, insert: str) -> None:  # pragma: no cover - protocol
        ...

    def replace_all(self, text: str) -> None:  # pragma: no cover - protocol
        ...

    def transaction(self) -> ContextManager[object]:  # pragma: no cover - protocol
        """Batch ``replace_range`` calls into one atomic change.

        Offsets of every call inside the block refer to the text as it was
        when the transaction started.
        """
        ...


def apply_edits(text: str, edits: Sequence[types.Edit]) -> str:
    """Apply non-overlapping *edits*, all expressed against *text*."""

    ordered = sorted(edits, key=lambda edit: (edit.start, edit.end))
    pieces: List[str] = []
    cursor = 0
    for edit in ordered:
        if edit.start < cursor or edit.start > edit.end or edit.end > len(text):
            raise ValueError(f"Edit {edit.start}-{edit.end} overlaps another edit or leaves the document.")
        pieces.append(text[cursor : edit.start])
        pieces.append(edit.insert)
        cursor = edit.end
    pieces.append(text[cursor:])
    return "".join(pieces)


class TextBuffer:
    """In-memory document buffer.

    ``revision`` counts committed write transactions, which makes "one write
    per resolution" observable.
    """

    def __init__(self, text: str = "", *, ready: bool = True):
        self._text = text
        self.ready = ready
        self.revision = 0
        self._pending: Optional[List[types.Edit]] = None

    def _require_ready(self) -> None:
        if not self.ready:
            raise EditorUnavailableError("Editor is not available.")

    def get_text(self) -> str:
        self._require_ready()
        return self._text

    def replace_range(self, start: int, end: int, insert: str) -> None:
        self._require_ready()
        edit = types.Edit(start=start, end=end, insert=insert)
        if self._pending is not None:
            self._pending.append(edit)
            return
        self._commit([edit])

    def replace_all(self, text: str) -> None:
        self._require_ready()
        self.replace_range(0, len(self._text), text)

    @contextmanager
    def transaction(self) -> Iterator["TextBuffer"]:
        self._require_ready()
        if self._pending is not None:
            raise RuntimeError("Nested transactions are not supported.")
        self._pending = []
        try:
            yield self
            edits = self._pending
        finally:
            self._pending = None
        if edits:
            self._commit(edits)

    def _commit(self, edits: Sequence[types.Edit]) -> None:
        self._text = apply_edits(self._text, edits)
        self.revision += 1
