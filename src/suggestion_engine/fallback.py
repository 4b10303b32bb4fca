"""Search/replace fallback request to the language model."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from . import config as config_module, llm, proposal, types
from .logging import RunLogger

_PROMPT_DIR = Path(__file__).resolve().parent / "prompts"


class FallbackRequestError(RuntimeError):
    """Raised when the model cannot produce a usable search/replace rewrite."""


def _load_prompt(name: str) -> str:
    path = _PROMPT_DIR / name
    if not path.exists():
        raise FileNotFoundError(f"Prompt {name} not found at {path}")
    return path.read_text().strip()


def reply_from_payload(data: Mapping[str, Any]) -> types.FallbackReply:
    """Convert a ``{explanation, search_replace_blocks} | {error}`` payload."""

    if "error" in data:
        raise FallbackRequestError(str(data["error"]))
    explanation = data.get("explanation")
    blocks = data.get("search_replace_blocks")
    if not isinstance(explanation, str) or not isinstance(blocks, list):
        raise FallbackRequestError("Reply is missing 'explanation' or 'search_replace_blocks'.")
    parsed = proposal.blocks_from_json(blocks)
    if len(parsed) != len(blocks):
        raise FallbackRequestError("Every search/replace block needs string 'search' and 'replace' fields.")
    if not parsed:
        raise FallbackRequestError("Reply contains no search/replace blocks.")
    return types.FallbackReply(explanation=explanation, blocks=parsed)


def parse_reply(raw: str) -> types.FallbackReply:
    """Parse the model's raw text into a fallback reply.

    A JSON object is expected; delimited SEARCH/REPLACE blocks or a bare JSON
    array are accepted as a last resort.
    """

    try:
        data = json.loads(proposal.strip_json_fences(raw))
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        return reply_from_payload(data)
    blocks = proposal.extract_search_replace_blocks(raw)
    if not blocks:
        raise FallbackRequestError("Could not extract search/replace blocks from the reply.")
    return types.FallbackReply(explanation="", blocks=blocks)


def build_messages(context: Sequence[Union[types.Message, Mapping[str, str]]]) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": _load_prompt("search_replace_fallback.txt")}]
    for message in context:
        if isinstance(message, types.Message):
            messages.append(message.to_dict())
        else:
            messages.append({"role": str(message["role"]), "content": str(message["content"])})
    return messages


async def request_search_replace(
    context: Sequence[Union[types.Message, Mapping[str, str]]],
    *,
    model: Optional[str] = None,
    config: Optional[config_module.FallbackConfig] = None,
    logger: Optional[RunLogger] = None,
) -> types.FallbackReply:
    """Ask the model to restate the edit from *context* as search/replace blocks.

    Client failures raise immediately; replies that cannot be parsed are
    retried up to ``config.max_retries`` times.
    """

    cfg = config or config_module.FallbackConfig()
    messages = build_messages(context)
    model_name = model or cfg.model
    attempts = 1 + max(0, cfg.max_retries)
    last_error: Optional[FallbackRequestError] = None
    for attempt in range(1, attempts + 1):
        if logger is not None:
            logger.log_event("fallback.request", attempt=attempt, model=model_name, messages=len(messages))
        try:
            raw = await llm.chat(
                messages,
                model=model_name,
                temperature=cfg.temperature,
                max_tokens=cfg.max_tokens,
            )
        except Exception as exc:
            raise FallbackRequestError(f"Fallback request failed: {exc}") from exc
        try:
            reply = parse_reply(raw or "")
        except FallbackRequestError as exc:
            last_error = exc
            if logger is not None:
                logger.log_event("fallback.unparsable", attempt=attempt, error=str(exc))
            continue
        if logger is not None:
            logger.log_event("fallback.reply", attempt=attempt, blocks=len(reply.blocks))
        return reply
    raise FallbackRequestError(
        f"No valid search/replace blocks after {attempts} attempt(s): {last_error}"
    )
