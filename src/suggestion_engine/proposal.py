"""Turn raw model output into engine proposals."""

from __future__ import annotations

import json
import re
from typing import Any, List, Mapping

from . import types

_DIFF_FENCE_RE = re.compile(r"```diff[ \t]*\n?(.*?)```", re.DOTALL)
_DELIMITED_RE = re.compile(
    r"<<<<<<< SEARCH[ \t]*\n(.*?)\n?=======[ \t]*\n(.*?)\n?>>>>>>> REPLACE", re.DOTALL
)
_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

_HUNK_KEYS = ("diffHunks", "hunks", "edits")
_BLOCK_KEYS = ("search_replace_blocks", "blocks")


class ProposalError(ValueError):
    """Raised when model output cannot be turned into a proposal."""


def _looks_like_diff(text: str) -> bool:
    return "@@" in text and "--- " in text and "+++ " in text


def extract_diff_blocks(raw: str) -> List[str]:
    """Return the fenced ```diff blocks of *raw* that carry diff markers.

    When nothing is fenced, the whole reply is taken as one diff if it looks
    like one.
    """

    blocks = [match.strip("\n") for match in _DIFF_FENCE_RE.findall(raw)]
    blocks = [block for block in blocks if _looks_like_diff(block)]
    if blocks:
        return blocks
    trimmed = raw.strip()
    has_change = any(line.startswith(("+", "-")) for line in trimmed.splitlines())
    if _looks_like_diff(trimmed) and has_change:
        return [trimmed]
    return []


def strip_json_fences(raw: str) -> str:
    return _JSON_FENCE_RE.sub("", raw.strip())


def blocks_from_json(items: Any) -> List[types.SearchReplaceBlock]:
    """Keep the well-formed ``{search, replace}`` objects of a decoded JSON list."""

    if not isinstance(items, list):
        return []
    return [
        types.SearchReplaceBlock.from_dict(item)
        for item in items
        if isinstance(item, dict) and isinstance(item.get("search"), str) and isinstance(item.get("replace"), str)
    ]


def extract_search_replace_blocks(raw: str) -> List[types.SearchReplaceBlock]:
    """Parse SEARCH/REPLACE delimited blocks, or a JSON array of block objects."""

    blocks = [
        types.SearchReplaceBlock(search=search, replace=replace)
        for search, replace in _DELIMITED_RE.findall(raw)
        if search.strip()
    ]
    if blocks:
        return blocks
    cleaned = strip_json_fences(raw)
    start, end = cleaned.find("["), cleaned.rfind("]")
    if start == -1 or end <= start:
        return []
    try:
        items = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        return []
    return blocks_from_json(items)


def parse_proposal(data: Mapping[str, Any], original_content: str) -> types.Suggestion:
    """Build a suggestion from a proposal object and the document snapshot."""

    if not isinstance(data, Mapping):
        raise ProposalError("Proposal must be a JSON object.")
    explanation = data.get("explanation") or ""
    if not isinstance(explanation, str):
        raise ProposalError("Proposal 'explanation' must be a string.")
    if "fullLatex" in data:
        raise ProposalError("Whole-document proposals are applied outside the patch engine.")

    for key in _HUNK_KEYS:
        if key in data:
            hunks = data[key]
            if not isinstance(hunks, list):
                raise ProposalError(f"Proposal '{key}' must be a list of hunk strings.")
            return types.DiffSuggestion(
                hunks=tuple(hunks),
                explanation=explanation,
                original_content=original_content,
            )
    for key in _BLOCK_KEYS:
        if key in data:
            raw_blocks = data[key]
            if not isinstance(raw_blocks, list):
                raise ProposalError(f"Proposal '{key}' must be a list of search/replace objects.")
            return types.SearchReplaceSuggestion(
                blocks=tuple(
                    types.SearchReplaceBlock.from_dict(item) if isinstance(item, dict) else item
                    for item in raw_blocks
                ),
                explanation=explanation,
                original_content=original_content,
            )
    raise ProposalError(
        "Proposal carries neither diff hunks nor search/replace blocks."
    )
