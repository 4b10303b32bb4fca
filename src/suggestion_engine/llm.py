"""LLM provider shim used by the fallback request."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol


class SupportsChat(Protocol):
    async def chat(self, messages: List[Dict[str, str]], *, model: str, **kwargs: Any) -> str:  # pragma: no cover - protocol
        ...


class _DefaultClient:
    async def chat(self, messages: List[Dict[str, str]], *, model: str, **_: Any) -> str:
        raise RuntimeError(
            "No LLM client configured. Call suggestion_engine.llm.set_client() before use."
        )


_client: SupportsChat = _DefaultClient()


def set_client(client: SupportsChat) -> None:
    """Register a global client used by :func:`chat`."""

    global _client
    _client = client


def get_client() -> SupportsChat:
    return _client


async def chat(messages: List[Dict[str, str]], *, model: str, **kwargs: Any) -> str:
    """Delegate a chat completion to the configured client."""

    return await _client.chat(messages, model=model, **kwargs)
