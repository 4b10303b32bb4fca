"""Core datatypes for the suggestion patch engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from typing import Literal


class ErrorKind(str, Enum):
    """Failure categories surfaced to the user alongside a result."""

    VALIDATION = "validation"
    PATCH_APPLY = "patch_apply"
    SEARCH_NOT_FOUND = "search_not_found"
    SEARCH_AMBIGUOUS = "search_ambiguous"
    INVALID_BLOCK = "invalid_block"
    EDITOR_UNAVAILABLE = "editor_unavailable"
    STALE_DOCUMENT = "stale_document"
    FALLBACK_REQUEST = "fallback_request"


@dataclass(frozen=True)
class SearchReplaceBlock:
    """Literal text substitution proposed by the model."""

    search: str
    replace: str
    explanation: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SearchReplaceBlock":
        return cls(
            search=raw.get("search"),  # type: ignore[arg-type]
            replace=raw.get("replace"),  # type: ignore[arg-type]
            explanation=raw.get("explanation"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"search": self.search, "replace": self.replace}
        if self.explanation is not None:
            data["explanation"] = self.explanation
        return data


@dataclass(frozen=True)
class Message:
    """One turn of the conversation that produced a proposal."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class DiffSuggestion:
    """Proposal expressed as unified-diff hunks against ``original_content``."""

    hunks: Tuple[Any, ...]
    explanation: str
    original_content: str
    validation_error: Optional[str] = None
    mode: Literal["diff"] = "diff"


@dataclass(frozen=True)
class SearchReplaceSuggestion:
    """Proposal expressed as exact search/replace blocks against ``original_content``."""

    blocks: Tuple[SearchReplaceBlock, ...]
    explanation: str
    original_content: str
    mode: Literal["search_replace"] = "search_replace"


Suggestion = Union[DiffSuggestion, SearchReplaceSuggestion]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of structural hunk validation."""

    valid: bool
    error: Optional[str] = None
    invalid_index: Optional[int] = None


@dataclass(frozen=True)
class PatchResult:
    """Outcome of applying diff hunks."""

    success: bool
    final_content: Optional[str] = None
    error: Optional[str] = None
    failed_index: Optional[int] = None
    kind: Optional[ErrorKind] = None


@dataclass(frozen=True)
class SearchReplaceResult:
    """Outcome of applying search/replace blocks."""

    success: bool
    final_content: Optional[str] = None
    error: Optional[str] = None
    failed_index: Optional[int] = None
    kind: Optional[ErrorKind] = None
    edits: List["Edit"] = field(default_factory=list)


@dataclass(frozen=True)
class Edit:
    """A single buffer change expressed in the coordinates of one text snapshot."""

    start: int
    end: int
    insert: str


@dataclass(frozen=True)
class FallbackReply:
    """Search/replace rewrite of an edit returned by the model."""

    explanation: str
    blocks: List[SearchReplaceBlock]
