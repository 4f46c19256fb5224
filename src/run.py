from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

from db_brain import Brain, BrainError, EmptyStore
from db_brain.settings import load_settings
from db_brain.tokenizers import available_tokenizers

from log_helpers import apply_verbosity, format_store_stats, log, log_error, log_verbose


def build_parser(
    default_db_path: str, default_precision: float, default_tokenizer: str, default_seed: int | None
) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ask a trained db-brain store for replies."
    )
    parser.add_argument(
        "--db",
        default=default_db_path,
        help="Path to the SQLite database produced by train.py (default: %(default)s).",
    )
    parser.add_argument(
        "--tokenizer",
        default=default_tokenizer,
        choices=available_tokenizers(),
        help="Tokenizer strategy; use the one the store was trained with (default: %(default)s).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=default_seed,
        help="Seed for the generation RNG, for reproducible replies (default: %(default)s).",
    )
    parser.add_argument(
        "--prompt",
        help="Single prompt to answer in non-interactive mode. If omitted an interactive shell starts.",
    )
    parser.add_argument(
        "--precision",
        type=float,
        default=default_precision,
        help="Candidate selection precision in [0, 1] (default: %(default)s).",
    )
    parser.add_argument(
        "--max-words",
        type=int,
        default=0,
        help="Truncate replies to this many words (default: no limit).",
    )
    parser.add_argument(
        "--use-cache",
        action="store_true",
        help="Consult remembered completions before walking the graph.",
    )
    parser.add_argument(
        "--learn",
        action="store_true",
        help="Also learn every prompt typed in interactive mode.",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=None,
        help="Optional limit for turns in interactive mode (default: unlimited).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Raise log verbosity once per flag (on top of DB_BRAIN_LOG_LEVEL).",
    )
    return parser


def resolve_db_path(raw: str) -> str:
    if raw == ":memory:":
        raise ValueError("run.py requires a persistent database path (not :memory:)")
    path = Path(raw).expanduser()
    if not path.exists():
        raise ValueError(f"{path} does not exist; train a store first with train.py")
    return str(path)


def answer(brain: Brain, prompt: str, args: argparse.Namespace) -> str:
    return brain.predict(
        prompt,
        max_words=args.max_words,
        precision=args.precision,
        use_cache=args.use_cache,
    )


def interactive_loop(brain: Brain, args: argparse.Namespace) -> None:
    log("[run] Type ':exit' or press Ctrl+D to leave, ':stats' to show the store size.")
    turns = 0
    while args.max_turns is None or turns < args.max_turns:
        try:
            user_input = input("you> ").strip()
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            log("[run] Interrupted. Exiting.")
            print()
            break
        if not user_input:
            continue
        if user_input in {":exit", ":quit"}:
            break
        if user_input == ":stats":
            stats = brain.stats()
            log(f"[run] {format_store_stats(stats)}")
            continue
        try:
            response = answer(brain, user_input, args)
        except EmptyStore as exc:
            log(f"[run] {exc}")
            response = ""
        log(f"brain> {response or '(no reply)'}")
        if args.learn:
            brain.learn(user_input)
        turns += 1
    log(f"[run] Session closed after {turns} turn(s).")


def main() -> None:
    settings = load_settings()
    parser = build_parser(
        settings.sqlite_dsn(), settings.default_precision, settings.tokenizer, settings.seed
    )
    args = parser.parse_args()
    apply_verbosity(args.verbose)
    log_verbose(3, f"[run:v3] Parsed CLI arguments: {vars(args)}")
    try:
        db_path = resolve_db_path(args.db)
    except ValueError as exc:
        parser.error(str(exc))
    brain: Brain | None = None
    try:
        rng = random.Random(args.seed) if args.seed is not None else None
        brain = Brain(db_path, tokenizer=args.tokenizer, settings=settings, rng=rng)
        log_verbose(2, f"[run] Loaded {db_path} (order={brain.order})")
        if args.prompt:
            log(f"you> {args.prompt}")
            log(f"brain> {answer(brain, args.prompt, args) or '(no reply)'}")
        else:
            interactive_loop(brain, args)
    except BrainError as exc:
        log_error(f"[run] {type(exc).__name__}: {exc}")
        sys.exit(1)
    finally:
        if brain is not None and not brain.closed:
            brain.close()


if __name__ == "__main__":
    main()
