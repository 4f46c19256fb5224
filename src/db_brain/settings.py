from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict

from .tokenizers import build_tokenizer


def _parse_env_file(path: Path) -> Dict[str, str]:
    """Minimal .env parser (no external dependency required)."""
    data: dict[str, str] = {}
    if not path.exists():
        return data
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip('"').strip("'")
    return data


@dataclass(frozen=True)
class BrainSettings:
    sqlite_path: str
    order: int | None
    tokenizer: str
    host: str
    port: int
    busy_timeout_seconds: float
    default_precision: float
    seed: int | None
    env_file: Path | None

    def sqlite_dsn(self) -> str:
        """Return the SQLite path used by the CLI utilities."""
        return self.sqlite_path


def load_settings(env_path: str | Path = ".env") -> BrainSettings:
    """Load brain settings from .env (if present) + real environment."""
    env_file = Path(env_path)
    file_values = _parse_env_file(env_file)

    def read(key: str, default: str) -> str:
        return os.environ.get(key, file_values.get(key, default))

    sqlite_path = read("DB_BRAIN_SQLITE_PATH", "var/brain.sqlite3")
    order_raw = read("DB_BRAIN_ORDER", "").strip()
    order = int(order_raw) if order_raw else None
    if order is not None and order < 1:
        raise ValueError(f"DB_BRAIN_ORDER must be >= 1 (got {order})")
    tokenizer = read("DB_BRAIN_TOKENIZER", "cobe").strip().lower()
    build_tokenizer(tokenizer)
    host = read("DB_BRAIN_HOST", "127.0.0.1")
    port = int(read("DB_BRAIN_PORT", "8080"))
    busy_timeout_seconds = max(0.0, float(read("DB_BRAIN_BUSY_TIMEOUT_SECONDS", "5.0")))
    default_precision = float(read("DB_BRAIN_DEFAULT_PRECISION", "0.7"))
    if not 0.0 < default_precision <= 1.0:
        raise ValueError(f"DB_BRAIN_DEFAULT_PRECISION must be in (0, 1] (got {default_precision})")
    seed_raw = read("DB_BRAIN_SEED", "").strip()
    seed = int(seed_raw) if seed_raw else None

    env_file_used = env_file if env_file.exists() else None
    return BrainSettings(
        sqlite_path=sqlite_path,
        order=order,
        tokenizer=tokenizer,
        host=host,
        port=port,
        busy_timeout_seconds=busy_timeout_seconds,
        default_precision=default_precision,
        seed=seed,
        env_file=env_file_used,
    )
