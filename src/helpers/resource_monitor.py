from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import psutil

_MB = 1024 * 1024
_SQLITE_SIDECARS = ("", "-wal", "-shm")


@dataclass(frozen=True)
class ResourceSample:
    """Process counters plus the on-disk store size, taken at one instant."""

    taken_at: float
    rss_mb: float
    cpu_seconds: float
    thread_count: int
    load_avg: Tuple[float, float, float] | None
    store_mb: float | None


@dataclass(frozen=True)
class ResourceDelta:
    duration_sec: float
    cpu_percent: float | None
    rss_after_mb: float
    rss_delta_mb: float
    thread_count: int
    load_avg: Tuple[float, float, float] | None
    store_after_mb: float | None
    store_delta_mb: float | None


def store_size_mb(db_path: str | Path | None) -> float | None:
    """Size of a SQLite file plus its WAL/SHM sidecars, or None for in-memory stores."""
    if db_path is None or str(db_path) == ":memory:":
        return None
    total = 0
    for suffix in _SQLITE_SIDECARS:
        candidate = Path(f"{db_path}{suffix}")
        if candidate.exists():
            total += candidate.stat().st_size
    return total / _MB


def _system_load() -> Tuple[float, float, float] | None:
    if not hasattr(os, "getloadavg"):
        return None
    try:
        one, five, fifteen = os.getloadavg()
    except OSError:
        return None
    return float(one), float(five), float(fifteen)


class ResourceMonitor:
    """Samples this process with psutil so ingest runs can report their cost."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = db_path
        self.cores = psutil.cpu_count(logical=True) or os.cpu_count() or 1
        self._proc = psutil.Process()

    def snapshot(self) -> ResourceSample:
        with self._proc.oneshot():
            times = self._proc.cpu_times()
            rss = self._proc.memory_info().rss
            threads = self._proc.num_threads()
        return ResourceSample(
            taken_at=time.perf_counter(),
            rss_mb=rss / _MB,
            cpu_seconds=float(times.user + times.system),
            thread_count=int(threads),
            load_avg=_system_load(),
            store_mb=store_size_mb(self.db_path),
        )

    def delta(self, before: ResourceSample, after: ResourceSample) -> ResourceDelta:
        elapsed = max(0.0, after.taken_at - before.taken_at)
        cpu_percent = None
        if elapsed > 0:
            busy = after.cpu_seconds - before.cpu_seconds
            cpu_percent = max(0.0, 100.0 * busy / (elapsed * self.cores))
        store_delta = None
        if before.store_mb is not None and after.store_mb is not None:
            store_delta = after.store_mb - before.store_mb
        return ResourceDelta(
            duration_sec=elapsed,
            cpu_percent=cpu_percent,
            rss_after_mb=after.rss_mb,
            rss_delta_mb=after.rss_mb - before.rss_mb,
            thread_count=after.thread_count,
            load_avg=after.load_avg,
            store_after_mb=after.store_mb,
            store_delta_mb=store_delta,
        )

    def describe(self, delta: ResourceDelta) -> str:
        """One-line summary, e.g. ``cpu=87.5%/8c rss=41.2MB(+3.1) store=1.20MB(+0.40) threads=1``."""
        fields = []
        if delta.cpu_percent is not None:
            fields.append(f"cpu={delta.cpu_percent:.1f}%/{self.cores}c")
        fields.append(f"rss={delta.rss_after_mb:.1f}MB({delta.rss_delta_mb:+.1f})")
        if delta.store_after_mb is not None:
            growth = "" if delta.store_delta_mb is None else f"({delta.store_delta_mb:+.2f})"
            fields.append(f"store={delta.store_after_mb:.2f}MB{growth}")
        fields.append(f"threads={delta.thread_count}")
        if delta.load_avg:
            fields.append("load=" + "/".join(f"{value:.2f}" for value in delta.load_avg))
        return " ".join(fields)
