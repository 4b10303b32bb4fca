"""Exact, uniqueness-checked search/replace application."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

from . import buffer as buffer_module, types
from .logging import RunLogger


def _failure(
    message: str,
    kind: types.ErrorKind,
    index: Optional[int] = None,
    logger: Optional[RunLogger] = None,
) -> types.SearchReplaceResult:
    if logger is not None:
        logger.log_event("search_replace.block_failed", index=index, error_kind=kind.value, error=message)
    return types.SearchReplaceResult(success=False, error=message, failed_index=index, kind=kind)


def _fields(block: Any) -> Tuple[Any, Any]:
    if isinstance(block, types.SearchReplaceBlock):
        return block.search, block.replace
    if isinstance(block, dict):
        return block.get("search"), block.get("replace")
    return None, None


def rebase_edit(
    edits: Sequence[types.Edit], running: str, start: int, end: int, insert: str
) -> List[types.Edit]:
    """Fold a change made to *running* into *edits* held in original coordinates.

    *edits* are sorted, non-overlapping and expressed against the original
    text; *running* is the original with all of them applied. A change that
    touches text produced by an earlier edit is merged with it, so the
    returned list can always be dispatched as one batch against the original.
    """

    before: List[types.Edit] = []
    touching: List[Tuple[types.Edit, int, int]] = []
    after: List[types.Edit] = []
    delta = delta_before = 0
    for edit in edits:
        run_start = edit.start + delta
        run_end = run_start + len(edit.insert)
        if run_end < start:
            before.append(edit)
            delta_before = delta + len(edit.insert) - (edit.end - edit.start)
        elif run_start > end:
            after.append(edit)
            continue
        else:
            touching.append((edit, run_start, run_end))
        delta += len(edit.insert) - (edit.end - edit.start)
    # ``delta`` now covers every edit before and touching the change

    if not touching:
        merged = types.Edit(start=start - delta_before, end=end - delta_before, insert=insert)
        return [*before, merged, *after]

    first, first_start, _ = touching[0]
    last, _, last_end = touching[-1]
    run_lo = min(start, first_start)
    run_hi = max(end, last_end)
    orig_lo = first.start if first_start <= start else start - delta_before
    orig_hi = last.end if last_end >= end else end - delta
    merged = types.Edit(
        start=orig_lo,
        end=orig_hi,
        insert=running[run_lo:start] + insert + running[end:run_hi],
    )
    return [*before, merged, *after]


def apply_search_replace(
    original_text: str,
    blocks: Sequence[Any],
    buffer: Optional[buffer_module.DocumentBuffer] = None,
    *,
    logger: Optional[RunLogger] = None,
) -> types.SearchReplaceResult:
    """Apply *blocks* in order to *original_text*.

    Each ``search`` must occur exactly once in the text produced by the
    preceding blocks. Edits are rebased onto *original_text* and, when a
    *buffer* is given, dispatched as one transaction.
    """

    if isinstance(blocks, (str, bytes)) or not isinstance(blocks, Sequence):
        return _failure("Blocks must be a list of search/replace objects.", types.ErrorKind.INVALID_BLOCK, logger=logger)

    running = original_text
    edits: List[types.Edit] = []
    for index, block in enumerate(blocks):
        label = f"Block {index + 1}"
        search, replace = _fields(block)
        if not isinstance(search, str) or not isinstance(replace, str) or not search:
            return _failure(
                f"{label}: 'search' and 'replace' must be strings and 'search' must not be empty.",
                types.ErrorKind.INVALID_BLOCK,
                index,
                logger,
            )
        start = running.find(search)
        if start == -1:
            return _failure(
                f"{label}: search text not found in the document. "
                "The content may have changed or the suggestion quoted it incorrectly.",
                types.ErrorKind.SEARCH_NOT_FOUND,
                index,
                logger,
            )
        if running.find(search, start + 1) != -1:
            return _failure(
                f"{label}: search text ambiguous, it occurs more than once in the document.",
                types.ErrorKind.SEARCH_AMBIGUOUS,
                index,
                logger,
            )
        end = start + len(search)
        edits = rebase_edit(edits, running, start, end, replace)
        running = running[:start] + replace + running[end:]
        if logger is not None:
            logger.log_event("search_replace.block_applied", index=index, start=start, length=len(running))

    if not edits or running == original_text or buffer is None:
        return types.SearchReplaceResult(success=True, final_content=running, edits=edits)

    try:
        if buffer.get_text() != original_text:
            return _failure(
                "The document changed since the suggestion was made; it was left untouched.",
                types.ErrorKind.STALE_DOCUMENT,
                logger=logger,
            )
        with buffer.transaction():
            for edit in edits:
                buffer.replace_range(edit.start, edit.end, edit.insert)
    except buffer_module.EditorUnavailableError as exc:
        return _failure(str(exc), types.ErrorKind.EDITOR_UNAVAILABLE, logger=logger)

    if logger is not None:
        logger.log_event("search_replace.applied", blocks=len(blocks), edits=len(edits))
    return types.SearchReplaceResult(success=True, final_content=running, edits=edits)
