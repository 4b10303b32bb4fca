from pathlib import Path

from suggestion_engine import diff_apply, patch, types, validate
from suggestion_engine.buffer import TextBuffer
from suggestion_engine.logging import RunLogger


DOC = "A\nB\nC\n"
HUNK = "@@ -1,3 +1,3 @@\n A\n-B\n+B2\n C\n"
BROKEN = "@@ -3,1 +3,2 @@\n-C\n+C2\n"


def test_single_hunk_is_written_once():
    buffer = TextBuffer(DOC)
    result = diff_apply.apply_diff(DOC, [HUNK], buffer)
    assert result.success
    assert result.final_content == "A\nB2\nC\n"
    assert buffer.get_text() == "A\nB2\nC\n"
    assert buffer.revision == 1


def test_simulation_without_buffer_returns_content():
    result = diff_apply.apply_diff(DOC, [HUNK])
    assert result.success
    assert result.final_content == "A\nB2\nC\n"
    assert result.failed_index is None


def test_failing_hunk_leaves_document_untouched():
    buffer = TextBuffer(DOC)
    assert validate.validate_hunks([HUNK, BROKEN]).invalid_index == 1
    result = diff_apply.apply_diff(DOC, [HUNK, BROKEN], buffer)
    assert not result.success
    assert result.failed_index == 1
    assert result.kind is types.ErrorKind.PATCH_APPLY
    assert "hunk 2" in result.error
    assert "No changes were applied" in result.error
    assert buffer.get_text() == DOC
    assert buffer.revision == 0


def test_hunks_apply_sequentially():
    text = "l1\nl2\nl3\nl4\nl5\n"
    first = "@@ -1,2 +1,2 @@\n-l1\n+L1\n l2\n"
    second = "@@ -4,2 +4,3 @@\n l4\n+new\n l5\n"
    expected = patch.apply_strict(patch.apply_strict(text, first), second)
    result = diff_apply.apply_diff(text, [first, second])
    assert result.final_content == expected == "L1\nl2\nl3\nl4\nnew\nl5\n"


def test_empty_hunk_list_is_a_no_op():
    buffer = TextBuffer(DOC)
    result = diff_apply.apply_diff(DOC, [], buffer)
    assert result.success
    assert result.final_content == DOC
    assert buffer.revision == 0


def test_unchanged_result_skips_write():
    buffer = TextBuffer(DOC)
    result = diff_apply.apply_diff(DOC, ["@@ -2 +2 @@\n-B\n+B\n"], buffer)
    assert result.success
    assert buffer.revision == 0


def test_fuzzy_recovery_depends_on_fuzz_factor():
    text = "A\nB\nC\nD\n"
    hunk = "@@ -1,3 +1,3 @@\n A\n-B\n+B2\n X\n"
    assert diff_apply.apply_diff(text, [hunk]).final_content == "A\nB2\nC\nD\n"
    strict = diff_apply.apply_diff(text, [hunk], fuzz_factor=0)
    assert not strict.success
    assert strict.failed_index == 0


def test_non_string_hunk_fails_at_its_index():
    result = diff_apply.apply_diff(DOC, [HUNK, None])
    assert result.failed_index == 1


def test_stale_buffer_is_not_written():
    buffer = TextBuffer("A\nB\nC\nextra\n")
    result = diff_apply.apply_diff(DOC, [HUNK], buffer)
    assert not result.success
    assert result.kind is types.ErrorKind.STALE_DOCUMENT
    assert buffer.get_text() == "A\nB\nC\nextra\n"


def test_unavailable_editor_is_reported():
    buffer = TextBuffer(DOC, ready=False)
    result = diff_apply.apply_diff(DOC, [HUNK], buffer)
    assert not result.success
    assert result.kind is types.ErrorKind.EDITOR_UNAVAILABLE


def test_events_are_logged(tmp_path: Path):
    logger = RunLogger(tmp_path, "diff")
    diff_apply.apply_diff(DOC, [HUNK], TextBuffer(DOC), logger=logger)
    diff_apply.apply_diff(DOC, [BROKEN], logger=logger)
    kinds = [event["kind"] for event in logger.events()]
    assert kinds == ["diff.hunk_applied", "diff.applied", "diff.failed"]
    assert logger.events()[-1]["data"]["error_kind"] == "patch_apply"
