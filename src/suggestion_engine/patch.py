"""Line-level unified-diff application on in-memory text.

Hunk text is parsed into :class:`HunkPart` objects (one per ``@@`` header) and
applied against a list of document lines. Placement searches outwards from the
position the header declares, so hunks with stale line numbers still land on
the right lines as long as their content matches. With a non-zero
``fuzz_factor`` up to that many context lines may differ from the document;
removed lines must always match exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from .validate import HUNK_HEADER_RE, is_benign_artifact

_FILE_HEADER_PREFIXES = ("diff ", "index ", "--- ", "+++ ")


class PatchError(ValueError):
    """Raised when hunk text cannot be parsed into patch parts."""


class PatchConflict(PatchError):
    """Raised when a parsed part does not fit the target text."""


@dataclass(frozen=True)
class HunkPart:
    """One ``@@`` section of a hunk."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: Tuple[str, ...]
    old_missing_newline: bool = False
    new_missing_newline: bool = False

    @property
    def old_lines(self) -> List[str]:
        return [line[1:] for line in self.lines if line[0] in " -"]

    @property
    def new_lines(self) -> List[str]:
        return [line[1:] for line in self.lines if line[0] in " +"]


def _is_section_boundary(line: str) -> bool:
    return HUNK_HEADER_RE.search(line) is not None or line.startswith(_FILE_HEADER_PREFIXES)


def _parse_body(
    lines: Sequence[str], start: int, old_count: int, new_count: int, label: str
) -> Tuple[List[str], bool, bool, int]:
    body: List[str] = []
    old_seen = new_seen = 0
    old_missing = new_missing = False
    i = start
    while i < len(lines):
        line = lines[i]
        satisfied = old_seen == old_count and new_seen == new_count
        if line.startswith("\\"):
            if body:
                tag = body[-1][0]
                old_missing = old_missing or tag in " -"
                new_missing = new_missing or tag in " +"
            i += 1
            continue
        if satisfied:
            j = i
            while j < len(lines) and lines[j] == "":
                j += 1
            if j == len(lines) or lines[j][0] not in " +-" or _is_section_boundary(lines[j]):
                break
            raise PatchError(
                f"{label}: body has more lines than the header declares "
                f"(-{old_count} +{new_count})."
            )
        if line == "":
            # blank context line whose leading space was stripped
            line = " "
        tag = line[0]
        if tag not in " +-":
            raise PatchError(f"{label}: unrecognized line prefix in {line[:50]!r}.")
        if tag in " -":
            old_seen += 1
        if tag in " +":
            new_seen += 1
        if old_seen > old_count or new_seen > new_count:
            raise PatchError(
                f"{label}: body has more lines than the header declares "
                f"(-{old_count} +{new_count})."
            )
        body.append(line)
        i += 1
    if old_seen != old_count or new_seen != new_count:
        raise PatchError(
            f"{label}: header declares -{old_count} +{new_count} lines "
            f"but body has -{old_seen} +{new_seen}."
        )
    return body, old_missing, new_missing, i


def parse_patch(text: str) -> List[HunkPart]:
    """Parse every ``@@`` section in *text*.

    Preamble lines (``diff --git``, ``index``, ``---``/``+++``) are skipped.
    Text without any header parses to an empty list when it is a benign
    artefact and raises :class:`PatchError` otherwise.
    """

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    parts: List[HunkPart] = []
    i = 0
    while i < len(lines):
        header = HUNK_HEADER_RE.search(lines[i])
        if header is None:
            i += 1
            continue
        old_count = int(header.group("old_count") or "1")
        new_count = int(header.group("new_count") or "1")
        label = f"Part {len(parts) + 1}"
        body, old_missing, new_missing, i = _parse_body(lines, i + 1, old_count, new_count, label)
        parts.append(
            HunkPart(
                old_start=int(header.group("old_start")),
                old_count=old_count,
                new_start=int(header.group("new_start")),
                new_count=new_count,
                lines=tuple(body),
                old_missing_newline=old_missing,
                new_missing_newline=new_missing,
            )
        )
    if not parts and not is_benign_artifact(text):
        raise PatchError("No hunk header '@@ -old,lines +new,lines @@' found.")
    return parts


def split_lines(text: str) -> Tuple[List[str], bool]:
    """Split *text* on newlines, returning the lines and whether it ended with one."""

    if text == "":
        return [], True
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
        return lines, True
    return lines, False


def join_lines(lines: Sequence[str], trailing_newline: bool) -> str:
    text = "\n".join(lines)
    if lines and trailing_newline:
        text += "\n"
    return text


def _fits(lines: Sequence[str], pos: int, part: HunkPart, fuzz_factor: int) -> bool:
    mismatches = checked = 0
    k = pos
    for line in part.lines:
        tag, content = line[0], line[1:]
        if tag == "+":
            continue
        checked += 1
        if lines[k] != content:
            if tag == "-":
                return False
            mismatches += 1
            if mismatches > fuzz_factor:
                return False
        k += 1
    return checked == 0 or mismatches < checked


def _candidates(expected: int, low: int, high: int) -> Iterator[int]:
    expected = min(max(expected, low), high)
    yield expected
    distance = 1
    while expected - distance >= low or expected + distance <= high:
        if expected + distance <= high:
            yield expected + distance
        if expected - distance >= low:
            yield expected - distance
        distance += 1


def locate(
    lines: Sequence[str], part: HunkPart, expected: int, min_line: int = 0, fuzz_factor: int = 0
) -> Optional[int]:
    """Return the line index where *part* fits, searching outwards from *expected*."""

    high = len(lines) - len(part.old_lines)
    if high < min_line:
        return None
    for pos in _candidates(expected, min_line, high):
        if _fits(lines, pos, part, fuzz_factor):
            return pos
    return None


def apply_parts(text: str, parts: Sequence[HunkPart], *, fuzz_factor: int = 0) -> str:
    """Apply *parts* in order to *text* and return the patched text.

    Raises :class:`PatchConflict` when a part cannot be placed.
    """

    lines, trailing_newline = split_lines(text)
    offset = 0
    min_line = 0
    for number, part in enumerate(parts, start=1):
        base = part.old_start - 1 if part.old_count else part.old_start
        pos = locate(lines, part, base + offset, min_line, fuzz_factor)
        if pos is None:
            raise PatchConflict(
                f"Part {number} (@@ -{part.old_start},{part.old_count} "
                f"+{part.new_start},{part.new_count} @@) does not match the document."
            )
        replacement: List[str] = []
        k = pos
        for line in part.lines:
            tag, content = line[0], line[1:]
            if tag == " ":
                replacement.append(lines[k])
                k += 1
            elif tag == "-":
                k += 1
            else:
                replacement.append(content)
        lines[pos:k] = replacement
        if part.new_missing_newline:
            trailing_newline = False
        elif part.old_missing_newline:
            trailing_newline = True
        offset = (pos - base) + len(replacement) - (k - pos)
        min_line = pos + len(replacement)
    return join_lines(lines, trailing_newline)


def apply_strict(text: str, hunk: str) -> str:
    """Apply every part of *hunk* with exact context matching."""

    return apply_parts(text, parse_patch(hunk), fuzz_factor=0)


def apply_fuzzy(text: str, hunk: str, fuzz_factor: int) -> str:
    """Apply each part of *hunk* on its own, tolerating context mismatches."""

    result = text
    for part in parse_patch(hunk):
        result = apply_parts(result, [part], fuzz_factor=fuzz_factor)
    return result
