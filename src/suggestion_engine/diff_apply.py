"""Sequential, all-or-nothing application of unified-diff hunks."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from . import buffer as buffer_module, patch, types
from .logging import RunLogger


def _failure(
    message: str,
    kind: types.ErrorKind,
    index: Optional[int] = None,
    logger: Optional[RunLogger] = None,
) -> types.PatchResult:
    if logger is not None:
        logger.log_event("diff.failed", index=index, error_kind=kind.value, error=message)
    return types.PatchResult(success=False, error=message, failed_index=index, kind=kind)


def _apply_hunk(running: str, hunk: str, fuzz_factor: int) -> tuple[str, bool]:
    """Return the patched text and whether fuzzy placement was needed."""

    try:
        return patch.apply_strict(running, hunk), False
    except patch.PatchConflict:
        if fuzz_factor <= 0:
            raise
    return patch.apply_fuzzy(running, hunk, fuzz_factor), True


def apply_diff(
    original_text: str,
    hunks: Sequence[Any],
    buffer: Optional[buffer_module.DocumentBuffer] = None,
    *,
    fuzz_factor: int = 2,
    logger: Optional[RunLogger] = None,
) -> types.PatchResult:
    """Apply *hunks* in order to *original_text*.

    Every hunk is tried strictly first, then part by part with up to
    *fuzz_factor* mismatching context lines. The first hunk that fails aborts
    the whole operation. Without a *buffer* this is a simulation; with one,
    the buffer receives exactly one ``replace_all`` when the content changes.
    """

    if isinstance(hunks, (str, bytes)) or not isinstance(hunks, Sequence):
        return _failure("Hunks must be a list of strings.", types.ErrorKind.VALIDATION, logger=logger)

    running = original_text
    for index, hunk in enumerate(hunks):
        if not isinstance(hunk, str):
            return _failure(
                f"Hunk {index + 1} is not a string. No changes were applied to the document.",
                types.ErrorKind.PATCH_APPLY,
                index,
                logger,
            )
        try:
            running, fuzzy = _apply_hunk(running, hunk, fuzz_factor)
        except patch.PatchError as exc:
            return _failure(
                f"Patch application failed for hunk {index + 1}: {exc} "
                "No changes were applied to the document.",
                types.ErrorKind.PATCH_APPLY,
                index,
                logger,
            )
        if logger is not None:
            logger.log_event(
                "diff.hunk_fuzzy" if fuzzy else "diff.hunk_applied",
                index=index,
                length=len(running),
            )

    if running == original_text or buffer is None:
        return types.PatchResult(success=True, final_content=running)

    try:
        if buffer.get_text() != original_text:
            return _failure(
                "The document changed since the suggestion was made; it was left untouched.",
                types.ErrorKind.STALE_DOCUMENT,
                logger=logger,
            )
        buffer.replace_all(running)
    except buffer_module.EditorUnavailableError as exc:
        return _failure(str(exc), types.ErrorKind.EDITOR_UNAVAILABLE, logger=logger)

    if logger is not None:
        logger.log_event("diff.applied", hunks=len(hunks), length=len(running))
    return types.PatchResult(success=True, final_content=running)
