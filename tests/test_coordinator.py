import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pytest

from suggestion_engine import config as config_module, coordinator, fallback, types
from suggestion_engine.buffer import TextBuffer
from suggestion_engine.coordinator import State
from suggestion_engine.logging import RunLogger


DOC = "A\nB\nC\n"
HUNK = "@@ -1,3 +1,3 @@\n A\n-B\n+B2\n C\n"
EDITED = "A\nX\nC\n"
REWRITE = types.FallbackReply(
    explanation="Rename X",
    blocks=[types.SearchReplaceBlock(search="X", replace="B2")],
)
CONTEXT = [{"role": "user", "content": "Rename B"}]


class FakeFallback:
    def __init__(self, reply=REWRITE, error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def __call__(self, context, *, model):
        self.calls.append((list(context), model))
        if self.error is not None:
            raise self.error
        return self.reply


def _config(**fallback_overrides) -> config_module.Config:
    cfg = config_module.Config.default()
    return replace(cfg, fallback=replace(cfg.fallback, **fallback_overrides))


def _coordinator(tmp_path: Path, buffer, fallback_fn=None, config=None):
    return coordinator.SuggestionCoordinator(
        buffer,
        config=config or config_module.Config.default(),
        fallback_fn=fallback_fn or FakeFallback(),
        logger=RunLogger(tmp_path, "session"),
    )


def _diff(hunks=(HUNK,)) -> types.DiffSuggestion:
    return types.DiffSuggestion(hunks=tuple(hunks), explanation="Rename B", original_content=DOC)


def test_valid_diff_is_simulated_then_applied(tmp_path: Path):
    buffer = TextBuffer(DOC)
    engine = _coordinator(tmp_path, buffer)
    session = engine.propose(_diff(), CONTEXT)
    assert session.history == [State.RECEIVED, State.SIMULATED, State.AWAITING_DECISION]
    assert session.preview.final_content == "A\nB2\nC\n"
    assert buffer.revision == 0

    assert asyncio.run(engine.apply()) is State.APPLIED
    assert buffer.get_text() == "A\nB2\nC\n"
    assert buffer.revision == 1
    assert engine.active is None
    assert session.context == ()


def test_invalid_hunks_only_allow_reject(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback()
    engine = _coordinator(tmp_path, buffer, fake)
    session = engine.propose(_diff([HUNK, "@@ -3,1 +3,2 @@\n-C\n+C2\n"]))
    assert session.state is State.INVALID
    assert session.error_kind is types.ErrorKind.VALIDATION
    assert "Hunk 2" in session.suggestion.validation_error
    assert not session.can_apply

    assert asyncio.run(engine.apply()) is State.INVALID
    assert buffer.revision == 0
    assert fake.calls == []
    assert engine.reject() is State.REJECTED
    assert engine.active is None


def test_simulation_failure_records_hunks(tmp_path: Path):
    engine = _coordinator(tmp_path, TextBuffer(DOC))
    session = engine.propose(_diff(["@@ -1,2 +1,2 @@\n Q\n-B\n+B2\n"]))
    assert session.state is State.SIMULATION_FAILED
    assert session.error_kind is types.ErrorKind.PATCH_APPLY
    assert not session.can_apply
    assert (tmp_path / "session" / f"hunks-{session.id}.json").exists()


def test_failed_apply_falls_back_to_search_replace(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback()
    engine = _coordinator(tmp_path, buffer, fake)
    session = engine.propose(_diff(), CONTEXT)
    buffer.replace_all(EDITED)

    assert asyncio.run(engine.apply()) is State.AWAITING_DECISION
    assert State.FALLBACK_REQUESTED in session.history
    assert session.mode == "search_replace"
    assert session.suggestion.original_content == DOC
    assert session.suggestion.explanation == "Rename X"
    assert fake.calls == [([types.Message("user", "Rename B")], "gpt-4o")]
    assert buffer.get_text() == EDITED

    assert asyncio.run(engine.apply()) is State.APPLIED
    assert buffer.get_text() == "A\nB2\nC\n"


def test_mapping_reply_is_accepted(tmp_path: Path):
    buffer = TextBuffer(DOC)
    reply = {"explanation": "", "search_replace_blocks": [{"search": "X", "replace": "B2"}]}
    engine = _coordinator(tmp_path, buffer, FakeFallback(reply=reply))
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)
    asyncio.run(engine.apply())
    assert session.mode == "search_replace"
    assert session.suggestion.explanation == "Rename B"


def test_fallback_failure_blocks_retry(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback(error=fallback.FallbackRequestError("model unavailable"))
    engine = _coordinator(tmp_path, buffer, fake)
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)

    assert asyncio.run(engine.apply()) is State.AWAITING_DECISION
    assert session.mode == "diff"
    assert session.error_kind is types.ErrorKind.FALLBACK_REQUEST
    assert "model unavailable" in session.error
    assert session.retry_blocked
    assert not session.can_apply

    asyncio.run(engine.apply())
    assert len(fake.calls) == 1
    assert engine.reject() is State.REJECTED
    assert buffer.get_text() == EDITED


def test_error_payload_counts_as_fallback_failure(tmp_path: Path):
    buffer = TextBuffer(DOC)
    engine = _coordinator(tmp_path, buffer, FakeFallback(reply={"error": "boom"}))
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)
    asyncio.run(engine.apply())
    assert session.state is State.AWAITING_DECISION
    assert "boom" in session.error


def test_retry_after_failure_when_configured(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback(error=fallback.FallbackRequestError("timeout"))
    engine = _coordinator(tmp_path, buffer, fake, _config(allow_retry_after_failure=True))
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)
    asyncio.run(engine.apply())
    assert session.can_apply
    asyncio.run(engine.apply())
    assert len(fake.calls) == 2


def test_disabled_fallback_fails_the_suggestion(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback()
    engine = _coordinator(tmp_path, buffer, fake, _config(enabled=False))
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)
    assert asyncio.run(engine.apply()) is State.FAILED
    assert "manually" in session.error
    assert fake.calls == []
    assert engine.active is None


def test_search_replace_failure_is_terminal(tmp_path: Path):
    buffer = TextBuffer(DOC)
    reply = types.FallbackReply(explanation="", blocks=[types.SearchReplaceBlock(search="nope", replace="x")])
    engine = _coordinator(tmp_path, buffer, FakeFallback(reply=reply))
    session = engine.propose(_diff())
    buffer.replace_all(EDITED)
    asyncio.run(engine.apply())
    assert not session.preview.success

    assert asyncio.run(engine.apply()) is State.FAILED
    assert session.error_kind is types.ErrorKind.SEARCH_NOT_FOUND
    assert buffer.get_text() == EDITED


def test_reject_cancels_fallback_in_flight(tmp_path: Path):
    buffer = TextBuffer(DOC)
    calls = []

    async def scenario():
        release = asyncio.Event()

        async def slow(context, *, model):
            calls.append(model)
            await release.wait()
            return REWRITE

        engine = _coordinator(tmp_path, buffer, slow)
        session = engine.propose(_diff())
        buffer.replace_all(EDITED)
        task = asyncio.ensure_future(engine.apply())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert session.state is State.FALLBACK_REQUESTED
        assert engine.reject() is State.REJECTED
        return engine, session, await task

    engine, session, state = asyncio.run(scenario())
    assert state is State.REJECTED
    assert calls == ["gpt-4o"]
    assert session.mode == "diff"
    assert session.fallback_task is None
    assert buffer.get_text() == EDITED
    assert engine.active is None


def test_late_reply_after_reject_is_discarded(tmp_path: Path):
    buffer = TextBuffer(DOC)

    async def scenario():
        release = asyncio.Event()

        async def stubborn(context, *, model):
            try:
                await release.wait()
            except asyncio.CancelledError:
                pass
            return REWRITE

        engine = _coordinator(tmp_path, buffer, stubborn)
        session = engine.propose(_diff())
        buffer.replace_all(EDITED)
        task = asyncio.ensure_future(engine.apply())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        engine.reject()
        return engine, session, await task

    engine, session, state = asyncio.run(scenario())
    assert state is State.REJECTED
    assert session.mode == "diff"
    assert engine.active is None
    assert buffer.get_text() == EDITED
    kinds = [event["kind"] for event in engine.logger.events()]
    assert "fallback.discarded" in kinds


def test_concurrent_apply_writes_once(tmp_path: Path):
    buffer = TextBuffer(DOC)
    engine = _coordinator(tmp_path, buffer)
    engine.propose(_diff())

    async def scenario():
        return await asyncio.gather(engine.apply(), engine.apply())

    assert asyncio.run(scenario()) == [State.APPLIED, None]
    assert buffer.revision == 1


def test_concurrent_apply_requests_fallback_once(tmp_path: Path):
    buffer = TextBuffer(DOC)
    fake = FakeFallback()
    engine = _coordinator(tmp_path, buffer, fake)
    engine.propose(_diff())
    buffer.replace_all(EDITED)

    async def scenario():
        return await asyncio.gather(engine.apply(), engine.apply())

    assert asyncio.run(scenario()) == [State.AWAITING_DECISION, State.FALLBACK_REQUESTED]
    assert len(fake.calls) == 1


def test_second_proposal_waits_for_resolution(tmp_path: Path):
    engine = _coordinator(tmp_path, TextBuffer(DOC))
    engine.propose(_diff())
    with pytest.raises(coordinator.SuggestionActiveError):
        engine.propose(_diff())
    engine.reject()
    assert engine.propose(_diff()).state is State.AWAITING_DECISION


def test_missing_editor_fails_the_suggestion(tmp_path: Path):
    engine = _coordinator(tmp_path, None)
    session = engine.propose(_diff())
    assert asyncio.run(engine.apply()) is State.FAILED
    assert session.error_kind is types.ErrorKind.EDITOR_UNAVAILABLE
    assert engine.active is None


def test_unready_editor_fails_the_suggestion(tmp_path: Path):
    buffer = TextBuffer(DOC)
    engine = _coordinator(tmp_path, buffer)
    session = engine.propose(_diff())
    buffer.ready = False
    assert asyncio.run(engine.apply()) is State.FAILED
    assert session.error_kind is types.ErrorKind.EDITOR_UNAVAILABLE


def test_search_replace_suggestion_is_previewed(tmp_path: Path):
    buffer = TextBuffer(DOC)
    engine = _coordinator(tmp_path, buffer)
    suggestion = types.SearchReplaceSuggestion(
        blocks=(types.SearchReplaceBlock(search="B", replace="B2"),),
        explanation="Rename B",
        original_content=DOC,
    )
    session = engine.propose(suggestion)
    assert session.history == [State.RECEIVED, State.AWAITING_DECISION]
    assert session.preview.final_content == "A\nB2\nC\n"
    assert asyncio.run(engine.apply()) is State.APPLIED
    assert buffer.get_text() == "A\nB2\nC\n"


def test_state_transitions_are_logged(tmp_path: Path):
    engine = _coordinator(tmp_path, TextBuffer(DOC))
    engine.propose(_diff())
    asyncio.run(engine.apply())
    states = [
        event["data"]["state"]
        for event in engine.logger.events()
        if event["kind"] == "suggestion.state"
    ]
    assert states == ["received", "simulated", "awaiting_decision", "applied"]
