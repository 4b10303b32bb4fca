"""Configuration loading helpers for the suggestion engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml


def _filter_kwargs(data: Dict[str, Any], *, allowed: set[str]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key in allowed}


@dataclass(frozen=True)
class PatchConfig:
    # context lines allowed to differ per hunk part; 0 disables fuzzy recovery
    fuzz_factor: int = 2


@dataclass(frozen=True)
class FallbackConfig:
    enabled: bool = True
    model: str = "gpt-4o"
    temperature: float = 0.3
    max_tokens: int = 3000
    max_retries: int = 1
    allow_retry_after_failure: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    dir: str = ".suggestion_runs"
    stream: bool = False


@dataclass(frozen=True)
class Config:
    """Aggregated configuration for the engine."""

    patch: PatchConfig = field(default_factory=PatchConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        patch_cfg = PatchConfig(**_filter_kwargs(data.get("patch", {}), allowed=set(PatchConfig.__annotations__.keys())))
        fallback_cfg = FallbackConfig(
            **_filter_kwargs(data.get("fallback", {}), allowed=set(FallbackConfig.__annotations__.keys()))
        )
        logging_cfg = LoggingConfig(
            **_filter_kwargs(data.get("logging", {}), allowed=set(LoggingConfig.__annotations__.keys()))
        )
        return cls(patch=patch_cfg, fallback=fallback_cfg, logging=logging_cfg)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """Load configuration from *path* if it exists, otherwise defaults."""

        if path is None:
            path = Path("config.yaml")
        else:
            path = Path(path)
        if not path.exists():
            return cls.default()
        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError("Config file must contain a mapping at the top level.")
        return cls.from_dict(raw)


__all__ = [
    "Config",
    "FallbackConfig",
    "LoggingConfig",
    "PatchConfig",
]
