"""Validation helpers for unified-diff hunks."""

from __future__ import annotations

import re
from typing import Any, Sequence

from . import types

HUNK_HEADER_RE = re.compile(
    r"@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)


class ValidationError(RuntimeError):
    """Raised when a hunk sequence fails validation."""

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


def is_benign_artifact(hunk: str) -> bool:
    """True for header-less text that carries no content (git preamble, blank)."""

    return not hunk.strip() or "diff --git" in hunk or "index " in hunk


def body_lines(hunk: str, header_end: int) -> list[str]:
    """Return the lines following the header line, minus the split artefact."""

    newline = hunk.find("\n", header_end)
    if newline == -1:
        return []
    lines = hunk[newline + 1 :].split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _check_hunk(index: int, hunk: Any) -> None:
    label = f"Hunk {index + 1}"
    if not isinstance(hunk, str):
        raise ValidationError(f"{label}: expected a string, got {type(hunk).__name__}.", index)

    header = HUNK_HEADER_RE.search(hunk)
    if header is None:
        if is_benign_artifact(hunk):
            return
        raise ValidationError(
            f"{label}: could not parse header '@@ -old,lines +new,lines @@'.", index
        )

    old_expected = int(header.group("old_count") or "1")
    new_expected = int(header.group("new_count") or "1")

    old_actual = new_actual = 0
    for line in body_lines(hunk, header.end()):
        prefix = line[:1]
        if prefix == "\\":
            continue
        if prefix == " ":
            old_actual += 1
            new_actual += 1
        elif prefix == "-":
            old_actual += 1
        elif prefix == "+":
            new_actual += 1
        else:
            raise ValidationError(
                f"{label}: unrecognized line prefix in {line[:50]!r}; "
                "expected ' ', '+', '-' or '\\'.",
                index,
            )

    if old_actual != old_expected:
        raise ValidationError(
            f"{label}: line count mismatch, header expects {old_expected} old lines "
            f"('-' or ' ') but found {old_actual}.",
            index,
        )
    if new_actual != new_expected:
        raise ValidationError(
            f"{label}: line count mismatch, header expects {new_expected} new lines "
            f"('+' or ' ') but found {new_actual}.",
            index,
        )


def require_valid_hunks(hunks: Sequence[Any]) -> None:
    """Raise :class:`ValidationError` on the first malformed hunk."""

    if isinstance(hunks, (str, bytes)) or not isinstance(hunks, Sequence):
        raise ValidationError("Hunks must be a list of strings.")
    for index, hunk in enumerate(hunks):
        _check_hunk(index, hunk)


def validate_hunks(hunks: Sequence[Any]) -> types.ValidationResult:
    """Structurally validate *hunks*, stopping at the first defect."""

    try:
        require_valid_hunks(hunks)
    except ValidationError as exc:
        return types.ValidationResult(valid=False, error=str(exc), invalid_index=exc.index)
    return types.ValidationResult(valid=True)
