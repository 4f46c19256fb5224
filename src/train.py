from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, Tuple

from db_brain import Brain, BrainError
from db_brain.db import DEFAULT_ORDER
from db_brain.settings import load_settings
from db_brain.tokenizers import available_tokenizers

from helpers.resource_monitor import ResourceMonitor
from log_helpers import apply_verbosity, format_store_stats, log, log_error, log_verbose


def build_parser(default_db_path: str, default_order: int | None, default_tokenizer: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Teach a db-brain SQLite store from plain-text corpora, one line per learn call."
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help="Text files or directories to ingest. Directories pull in *.txt files.",
    )
    parser.add_argument(
        "--db",
        default=default_db_path,
        help="Path to the SQLite database file (default: %(default)s).",
    )
    parser.add_argument(
        "--order",
        type=int,
        default=default_order,
        help=(
            "Markov order (default: %(default)s; when unset the stored order is used, or "
            f"{DEFAULT_ORDER} for a fresh database). An existing store must match it."
        ),
    )
    parser.add_argument(
        "--tokenizer",
        default=default_tokenizer,
        choices=available_tokenizers(),
        help="Tokenizer strategy used to split each line (default: %(default)s).",
    )
    parser.add_argument(
        "--encoding",
        default="utf-8",
        help="File encoding used while reading corpora (default: %(default)s).",
    )
    parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read an additional corpus from STDIN.",
    )
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="When a directory is provided, recursively ingest *.txt files.",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete the target database (if it exists) before training.",
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Log CPU/RSS/store-size deltas for every ingested corpus.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Raise log verbosity once per flag (on top of DB_BRAIN_LOG_LEVEL).",
    )
    return parser


def resolve_db_path(raw: str, reset: bool) -> str:
    if raw == ":memory:":
        raise ValueError("train.py requires a persistent database path (not :memory:)")
    path = Path(raw).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    if reset:
        for suffix in ("", "-wal", "-shm"):
            target = Path(f"{path}{suffix}")
            if target.exists():
                target.unlink()
                log_verbose(2, f"[train] --reset removed {target}")
    return str(path)


def collect_files(entries: Sequence[str], recursive: bool) -> List[Path]:
    files: list[Path] = []
    for entry in entries:
        path = Path(entry).expanduser()
        if path.is_file():
            files.append(path)
            log_verbose(3, f"[train:v3] Queued input file {path}")
            continue
        if path.is_dir():
            pattern = "**/*.txt" if recursive else "*.txt"
            for candidate in sorted(path.glob(pattern)):
                if candidate.is_file():
                    files.append(candidate)
                    log_verbose(3, f"[train:v3] Discovered input file {candidate}")
            continue
        raise FileNotFoundError(f"No such file or directory: {path}")
    return files


@dataclass(frozen=True)
class Corpus:
    label: str
    text: str


def iter_corpora(paths: Iterable[Path], encoding: str, include_stdin: bool) -> Iterable[Corpus]:
    for path in paths:
        yield Corpus(str(path), path.read_text(encoding=encoding))
    if include_stdin:
        yield Corpus("<stdin>", sys.stdin.read())


def learn_corpus(brain: Brain, text: str) -> Tuple[int, int]:
    """Learn every non-empty line; returns (lines learned, word tokens learned)."""
    lines = 0
    tokens = 0
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        learned = brain.learn(line)
        if learned:
            lines += 1
            tokens += learned
    return lines, tokens


class IngestProfiler:
    """Optional profiler that logs ingest latency together with resource telemetry."""

    def __init__(self, enabled: bool, db_path: str) -> None:
        self.enabled = enabled
        self.monitor = ResourceMonitor(db_path) if enabled else None

    def measure(self, label: str, fn: Callable[[], Tuple[int, int]]) -> Tuple[int, int]:
        if not self.monitor:
            return fn()
        before = self.monitor.snapshot()
        start = time.perf_counter()
        lines, tokens = fn()
        duration = time.perf_counter() - start
        delta = self.monitor.delta(before, self.monitor.snapshot())
        log(f"[profile] {label}: {lines} lines / {tokens} tokens in {duration:.2f}s {self.monitor.describe(delta)}")
        return lines, tokens


def main() -> None:
    settings = load_settings()
    parser = build_parser(settings.sqlite_dsn(), settings.order, settings.tokenizer)
    args = parser.parse_args()
    apply_verbosity(args.verbose)
    log_verbose(3, f"[train:v3] Parsed CLI arguments: {vars(args)}")
    if not args.inputs and not args.stdin:
        parser.error("provide at least one input path or --stdin")
    if args.order is not None and args.order < 1:
        parser.error(f"--order must be >= 1 (got {args.order})")
    try:
        db_path = resolve_db_path(args.db, args.reset)
        files = collect_files(args.inputs, args.recursive)
    except (ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))

    try:
        brain = Brain(db_path, args.order, tokenizer=args.tokenizer, settings=settings)
    except BrainError as exc:
        log_error(f"[train] Unable to open {db_path}: {exc}")
        sys.exit(1)

    profiler = IngestProfiler(args.profile, db_path)
    total_lines = 0
    total_tokens = 0
    try:
        log(f"[train] Starting ingest into {db_path} with order={brain.order} tokenizer={args.tokenizer}.")
        for corpus in iter_corpora(files, args.encoding, args.stdin):
            log(f"[train] Processing {corpus.label} ({len(corpus.text)} bytes)...")
            lines, tokens = profiler.measure(
                corpus.label, lambda text=corpus.text: learn_corpus(brain, text)
            )
            if not lines:
                log(f"[train] Skipping {corpus.label} (no learnable lines)")
                continue
            total_lines += lines
            total_tokens += tokens
            log(f"[train] Ingested {corpus.label}: {lines} lines -> {tokens} tokens")
        stats = brain.stats()
        log(
            f"[train] Done: {total_lines} lines / {total_tokens} tokens learned. "
            f"Store now holds {format_store_stats(stats)}."
        )
    except BrainError as exc:
        log_error(f"[train] Ingest aborted: {exc}")
        sys.exit(1)
    finally:
        if not brain.closed:
            brain.close()


if __name__ == "__main__":
    main()
