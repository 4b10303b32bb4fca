import pytest

from suggestion_engine import proposal, types


DIFF = "--- a/main.tex\n+++ b/main.tex\n@@ -1,3 +1,3 @@\n A\n-B\n+B2\n C"


def test_extract_diff_blocks_reads_fenced_blocks():
    raw = f"Some prose.\n```diff\n{DIFF}\n```\nMore prose.\n```diff\nnot a diff\n```"
    assert proposal.extract_diff_blocks(raw) == [DIFF]


def test_extract_diff_blocks_falls_back_to_whole_reply():
    assert proposal.extract_diff_blocks(DIFF + "\n") == [DIFF]
    assert proposal.extract_diff_blocks("I could not find anything to change.") == []


def test_extract_search_replace_blocks_keeps_indentation():
    raw = (
        "<<<<<<< SEARCH\n    \\label{eq:1}\n=======\n    \\label{eq:one}\n>>>>>>> REPLACE\n"
        "<<<<<<< SEARCH\nfoo\n=======\n\n>>>>>>> REPLACE"
    )
    blocks = proposal.extract_search_replace_blocks(raw)
    assert blocks[0] == types.SearchReplaceBlock(search="    \\label{eq:1}", replace="    \\label{eq:one}")
    assert blocks[1].search == "foo"
    assert len(blocks) == 2


def test_extract_search_replace_blocks_reads_json_array():
    raw = '```json\n[{"search": "a", "replace": "b"}, {"search": 1}]\n```'
    assert proposal.extract_search_replace_blocks(raw) == [types.SearchReplaceBlock(search="a", replace="b")]


def test_parse_proposal_builds_diff_suggestion():
    suggestion = proposal.parse_proposal({"explanation": "fix", "diffHunks": [DIFF]}, "A\nB\nC\n")
    assert isinstance(suggestion, types.DiffSuggestion)
    assert suggestion.mode == "diff"
    assert suggestion.hunks == (DIFF,)
    assert suggestion.original_content == "A\nB\nC\n"


def test_parse_proposal_builds_search_replace_suggestion():
    suggestion = proposal.parse_proposal(
        {"search_replace_blocks": [{"search": "B", "replace": "B2"}]},
        "A\nB\nC\n",
    )
    assert isinstance(suggestion, types.SearchReplaceSuggestion)
    assert suggestion.explanation == ""
    assert suggestion.blocks == (types.SearchReplaceBlock(search="B", replace="B2"),)


@pytest.mark.parametrize(
    "data",
    [
        {"fullLatex": "\\documentclass{article}"},
        {"explanation": "nothing"},
        {"diffHunks": "not a list"},
        ["not", "an", "object"],
    ],
)
def test_parse_proposal_rejects_unusable_input(data):
    with pytest.raises(proposal.ProposalError):
        proposal.parse_proposal(data, "")
