"""CLI entrypoint for the suggestion engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from . import config as config_module, coordinator, proposal, types, validate
from .buffer import TextBuffer
from .logging import RunLogger


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="suggestion-engine")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("validate", help="Check the structure of diff hunks")
    check.add_argument("hunks", help="JSON file with a list of hunks or a proposal object")

    apply = sub.add_parser("apply", help="Apply a proposal to a document")
    apply.add_argument("document", help="Path to the LaTeX document")
    apply.add_argument("proposal", help="Proposal JSON, or a raw model reply containing ```diff blocks")
    apply.add_argument("--out", default=None, help="Write the result here instead of over the document")
    apply.add_argument("--dry-run", action="store_true", help="Print the simulated result and write nothing")
    apply.add_argument(
        "--config",
        default=None,
        help="Path to YAML configuration file (defaults to ./config.yaml if omitted)",
    )
    return parser.parse_args(list(args) if args is not None else None)


def _load_hunks(path: str) -> list:
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        for key in ("diffHunks", "hunks", "edits"):
            if key in data:
                return data[key]
    return data


def _load_suggestion(path: str, original: str) -> types.Suggestion:
    raw = Path(path).read_text()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        hunks = proposal.extract_diff_blocks(raw)
        if not hunks:
            raise proposal.ProposalError("No diff blocks found in the model reply.")
        return types.DiffSuggestion(hunks=tuple(hunks), explanation="", original_content=original)
    return proposal.parse_proposal(data, original)


def _run_validate(ns: argparse.Namespace) -> int:
    result = validate.validate_hunks(_load_hunks(ns.hunks))
    print(json.dumps({"valid": result.valid, "error": result.error, "invalid_index": result.invalid_index}))
    return 0 if result.valid else 1


def _run_apply(ns: argparse.Namespace) -> int:
    cfg = config_module.Config.load(ns.config)
    # no model client is wired up on the command line
    cfg = replace(cfg, fallback=replace(cfg.fallback, enabled=False))
    document = Path(ns.document)
    original = document.read_text()
    try:
        suggestion = _load_suggestion(ns.proposal, original)
    except proposal.ProposalError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    buffer = TextBuffer(original)
    logger = RunLogger(cfg.logging.dir, stream=cfg.logging.stream)
    engine = coordinator.SuggestionCoordinator(buffer, config=cfg, logger=logger)
    session = engine.propose(suggestion)
    if ns.dry_run:
        preview = session.preview
        if preview is None or not preview.success:
            print(f"error: {session.error or (preview.error if preview else 'no preview')}", file=sys.stderr)
            return 1
        sys.stdout.write(preview.final_content or "")
        return 0

    state = asyncio.run(engine.apply())
    if state is not coordinator.State.APPLIED:
        engine.reject()
        print(f"error: {session.error}", file=sys.stderr)
        return 1
    target = Path(ns.out) if ns.out else document
    target.write_text(buffer.get_text())
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    ns = _parse_args(argv)
    if ns.command == "validate":
        return _run_validate(ns)
    return _run_apply(ns)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
