"""suggestion-engine package."""

from . import (
    buffer,
    config,
    coordinator,
    diff_apply,
    fallback,
    llm,
    logging,
    main,
    patch,
    proposal,
    search_replace,
    types,
    validate,
)  # noqa: F401

__all__ = [
    "buffer",
    "config",
    "coordinator",
    "diff_apply",
    "fallback",
    "llm",
    "logging",
    "main",
    "patch",
    "proposal",
    "search_replace",
    "types",
    "validate",
]
