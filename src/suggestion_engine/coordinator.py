"""Suggestion lifecycle coordinator.

One suggestion is active at a time. A diff suggestion is validated and
simulated against its snapshot as soon as it arrives. Applying it recomputes
the edit against the text the buffer holds at that moment and writes it once
or, on failure, asks the model for a search/replace rewrite of the same edit.
The rewrite is awaited as a task tied to the session, so a reject while it is
in flight cancels it and any late reply is dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from . import config as config_module, diff_apply, fallback, search_replace, types, validate
from .buffer import DocumentBuffer, EditorUnavailableError
from .logging import RunLogger


class State(str, Enum):
    RECEIVED = "received"
    INVALID = "invalid"
    SIMULATED = "simulated"
    SIMULATION_FAILED = "simulation_failed"
    AWAITING_DECISION = "awaiting_decision"
    FALLBACK_REQUESTED = "fallback_requested"
    APPLIED = "applied"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATES = frozenset({State.APPLIED, State.REJECTED, State.FAILED})

FallbackFn = Callable[..., Awaitable[Union[types.FallbackReply, Mapping[str, Any]]]]
ApplyResult = Union[types.PatchResult, types.SearchReplaceResult]


class SuggestionActiveError(RuntimeError):
    """Raised when a new suggestion arrives before the previous one is resolved."""


@dataclass
class Session:
    """Lifecycle record of one suggestion."""

    id: str
    suggestion: types.Suggestion
    context: Tuple[types.Message, ...]
    state: State = State.RECEIVED
    history: List[State] = field(default_factory=list)
    preview: Optional[ApplyResult] = None
    result: Optional[ApplyResult] = None
    error: Optional[str] = None
    error_kind: Optional[types.ErrorKind] = None
    retry_blocked: bool = False
    cancelled: bool = False
    fallback_task: Optional["asyncio.Task[types.FallbackReply]"] = None

    @property
    def mode(self) -> str:
        return self.suggestion.mode

    @property
    def resolved(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_apply(self) -> bool:
        return self.state is State.AWAITING_DECISION and not self.retry_blocked

    @property
    def can_reject(self) -> bool:
        return not self.resolved


def _as_message(message: Union[types.Message, Mapping[str, str]]) -> types.Message:
    if isinstance(message, types.Message):
        return message
    return types.Message(role=str(message["role"]), content=str(message["content"]))


def _printable(hunks: Sequence[Any]) -> List[str]:
    return [hunk if isinstance(hunk, str) else repr(hunk) for hunk in hunks]


class SuggestionCoordinator:
    """Drive suggestions from arrival to a terminal state against one buffer."""

    def __init__(
        self,
        buffer: Optional[DocumentBuffer],
        *,
        config: Optional[config_module.Config] = None,
        fallback_fn: Optional[FallbackFn] = None,
        logger: Optional[RunLogger] = None,
    ):
        self.buffer = buffer
        self.config = config or config_module.Config.default()
        self._fallback_fn = fallback_fn or self._request_fallback
        self.logger = logger or RunLogger(self.config.logging.dir, stream=self.config.logging.stream)
        self._active: Optional[Session] = None

    @property
    def active(self) -> Optional[Session]:
        return self._active

    # ========== Transitions ==========

    def _transition(self, session: Session, state: State, **data: Any) -> None:
        session.state = state
        session.history.append(state)
        self.logger.log_event(
            "suggestion.state", suggestion_id=session.id, state=state.value, mode=session.mode, **data
        )

    def _finish(self, session: Session, state: State, error: Optional[str] = None, kind: Optional[types.ErrorKind] = None) -> State:
        if error is not None:
            session.error = error
            session.error_kind = kind
        session.context = ()
        self._transition(session, state, error=error)
        if self._active is session:
            self._active = None
        return state

    def _is_stale(self, session: Session) -> bool:
        return session.cancelled or self._active is not session

    # ========== Arrival ==========

    def propose(
        self,
        suggestion: types.Suggestion,
        context: Sequence[Union[types.Message, Mapping[str, str]]] = (),
    ) -> Session:
        """Register *suggestion* and run validation and simulation."""

        if self._active is not None:
            raise SuggestionActiveError(
                f"Suggestion {self._active.id} is still {self._active.state.value}; apply or reject it first."
            )
        session = Session(
            id=uuid4().hex,
            suggestion=suggestion,
            context=tuple(_as_message(message) for message in context),
        )
        self._active = session
        self._transition(session, State.RECEIVED, explanation=suggestion.explanation[:200])

        if isinstance(suggestion, types.DiffSuggestion):
            self._receive_diff(session, suggestion)
        else:
            session.preview = search_replace.apply_search_replace(
                suggestion.original_content, suggestion.blocks
            )
            self._transition(session, State.AWAITING_DECISION)
        return session

    def _receive_diff(self, session: Session, suggestion: types.DiffSuggestion) -> None:
        validation = validate.validate_hunks(suggestion.hunks)
        if not validation.valid:
            session.suggestion = replace(suggestion, validation_error=validation.error)
            session.error = validation.error
            session.error_kind = types.ErrorKind.VALIDATION
            self._transition(session, State.INVALID, index=validation.invalid_index, error=validation.error)
            return

        self._transition(session, State.SIMULATED, hunks=len(suggestion.hunks))
        preview = diff_apply.apply_diff(
            suggestion.original_content,
            suggestion.hunks,
            fuzz_factor=self.config.patch.fuzz_factor,
        )
        session.preview = preview
        if not preview.success:
            session.error = preview.error
            session.error_kind = preview.kind
            self.logger.log_json(f"hunks-{session.id}", _printable(suggestion.hunks))
            self._transition(session, State.SIMULATION_FAILED, index=preview.failed_index, error=preview.error)
            return
        self._transition(session, State.AWAITING_DECISION)

    # ========== Decisions ==========

    def reject(self) -> Optional[State]:
        """Reject the active suggestion, cancelling any fallback in flight."""

        session = self._active
        if session is None:
            return None
        session.cancelled = True
        task = session.fallback_task
        if task is not None and not task.done():
            task.cancel()
        return self._finish(session, State.REJECTED)

    async def apply(self) -> Optional[State]:
        """Apply the active suggestion if Apply is currently offered.

        Calls made while the suggestion is not awaiting a decision, including
        a second call racing the first, do nothing.
        """

        session = self._active
        if session is None or not session.can_apply:
            self.logger.log_event(
                "suggestion.apply_ignored",
                suggestion_id=session.id if session else None,
                state=session.state.value if session else None,
            )
            return session.state if session else None

        if self.buffer is None:
            return self._finish(
                session,
                State.FAILED,
                "Editor is not available; the suggestion was discarded.",
                types.ErrorKind.EDITOR_UNAVAILABLE,
            )

        # edits are computed against the text the buffer holds right now
        try:
            current = self.buffer.get_text()
        except EditorUnavailableError as exc:
            return self._finish(
                session,
                State.FAILED,
                f"{exc} The suggestion was discarded.",
                types.ErrorKind.EDITOR_UNAVAILABLE,
            )

        suggestion = session.suggestion
        if isinstance(suggestion, types.DiffSuggestion):
            return await self._apply_diff(session, suggestion, current)
        return self._apply_search_replace(session, suggestion, current)

    async def _apply_diff(self, session: Session, suggestion: types.DiffSuggestion, current: str) -> State:
        result = diff_apply.apply_diff(
            current,
            suggestion.hunks,
            self.buffer,
            fuzz_factor=self.config.patch.fuzz_factor,
            logger=self.logger,
        )
        session.result = result
        if result.success:
            return self._finish(session, State.APPLIED)
        if result.kind in (types.ErrorKind.EDITOR_UNAVAILABLE, types.ErrorKind.STALE_DOCUMENT):
            return self._finish(session, State.FAILED, result.error, result.kind)
        if not self.config.fallback.enabled:
            return self._finish(
                session,
                State.FAILED,
                f"{result.error} Please apply the change manually.",
                result.kind,
            )

        session.error = result.error
        session.error_kind = result.kind
        self._transition(session, State.FALLBACK_REQUESTED, index=result.failed_index, error=result.error)
        task = asyncio.ensure_future(self._fallback_fn(session.context, model=self.config.fallback.model))
        session.fallback_task = task
        try:
            reply = await task
            if isinstance(reply, Mapping):
                reply = fallback.reply_from_payload(reply)
        except asyncio.CancelledError:
            if session.cancelled:
                self.logger.log_event("fallback.discarded", suggestion_id=session.id, reason="cancelled")
                return session.state
            raise
        except Exception as exc:
            if self._is_stale(session):
                self.logger.log_event("fallback.discarded", suggestion_id=session.id, reason="stale")
                return session.state
            session.error = f"Fallback request failed: {exc}"
            session.error_kind = types.ErrorKind.FALLBACK_REQUEST
            session.retry_blocked = not self.config.fallback.allow_retry_after_failure
            self._transition(session, State.AWAITING_DECISION, error=session.error, retry_blocked=session.retry_blocked)
            return session.state
        finally:
            session.fallback_task = None

        if self._is_stale(session):
            self.logger.log_event("fallback.discarded", suggestion_id=session.id, reason="stale")
            return session.state

        rewrite = types.SearchReplaceSuggestion(
            blocks=tuple(reply.blocks),
            explanation=reply.explanation or suggestion.explanation,
            original_content=suggestion.original_content,
        )
        session.suggestion = rewrite
        session.preview = search_replace.apply_search_replace(current, rewrite.blocks)
        session.error = None
        session.error_kind = None
        self._transition(session, State.AWAITING_DECISION, blocks=len(rewrite.blocks))
        return session.state

    def _apply_search_replace(
        self, session: Session, suggestion: types.SearchReplaceSuggestion, current: str
    ) -> State:
        result = search_replace.apply_search_replace(
            current,
            suggestion.blocks,
            self.buffer,
            logger=self.logger,
        )
        session.result = result
        if result.success:
            return self._finish(session, State.APPLIED)
        return self._finish(
            session,
            State.FAILED,
            f"{result.error} The document was left untouched; please edit it manually.",
            result.kind,
        )

    # ========== Fallback ==========

    async def _request_fallback(self, context: Sequence[types.Message], *, model: str) -> types.FallbackReply:
        return await fallback.request_search_replace(
            context,
            model=model,
            config=self.config.fallback,
            logger=self.logger,
        )
