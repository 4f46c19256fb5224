from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path

import uvicorn

from db_brain import Brain, BrainError
from db_brain.service import create_app
from db_brain.settings import BrainSettings, load_settings
from db_brain.tokenizers import available_tokenizers

from log_helpers import apply_verbosity, format_store_stats, log, log_error, log_verbose


def build_parser(settings: BrainSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serve /predict and /learn for a db-brain store over HTTP."
    )
    parser.add_argument(
        "--db",
        default=settings.sqlite_dsn(),
        help="Path to the SQLite database (created on first use; default: %(default)s).",
    )
    parser.add_argument(
        "--order",
        type=int,
        default=None,
        help="Markov order for a fresh store; must match an existing store when given.",
    )
    parser.add_argument(
        "--tokenizer",
        default=settings.tokenizer,
        choices=available_tokenizers(),
        help="Tokenizer strategy for learn and predict (default: %(default)s).",
    )
    parser.add_argument("--seed", type=int, default=settings.seed, help="Generation RNG seed (default: %(default)s).")
    parser.add_argument("--host", default=settings.host, help="Bind address (default: %(default)s).")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port (default: %(default)s).")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Raise log verbosity once per flag (on top of DB_BRAIN_LOG_LEVEL).",
    )
    return parser


def main() -> None:
    settings = load_settings()
    parser = build_parser(settings)
    args = parser.parse_args()
    apply_verbosity(args.verbose)
    log_verbose(3, f"[serve:v3] Parsed CLI arguments: {vars(args)}")
    if args.order is not None and args.order < 1:
        parser.error(f"--order must be >= 1 (got {args.order})")
    db_path = Path(args.db).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        rng = random.Random(args.seed) if args.seed is not None else None
        brain = Brain(db_path, args.order, tokenizer=args.tokenizer, settings=settings, rng=rng)
    except BrainError as exc:
        log_error(f"[serve] Unable to open brain at {db_path}: {exc}")
        sys.exit(1)
    stats = brain.stats()
    log(
        f"[serve] Brain ready at {db_path} ({format_store_stats(stats)}); listening on {args.host}:{args.port}"
    )
    app = create_app(brain, close_on_shutdown=True)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
