from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Sequence

DEFAULT_PRECISION = 0.7
HIGH_PRECISION = 0.9


def clamp_precision(precision: float | None) -> float:
    """Map missing or non-positive values to 0.7 and cap at 1.0."""
    if precision is None or precision <= 0:
        return DEFAULT_PRECISION
    return min(float(precision), 1.0)


def word_count(text: str) -> int:
    return len(text.split())


def candidate_count(precision: float) -> int:
    if precision > HIGH_PRECISION:
        return 5
    if precision > DEFAULT_PRECISION:
        return 3
    return 1


@dataclass(frozen=True)
class CandidateSelector:
    """Turns a precision knob into a candidate budget and a pick rule.

    Above 0.9 the shortest candidate wins (first one on ties); between 0.7
    and 0.9 the median by word count wins; at or below 0.7 the first draw
    is taken as is.
    """

    default_precision: float = DEFAULT_PRECISION

    def resolve(self, precision: float | None) -> float:
        """An omitted precision takes ``default_precision``; explicit values are clamped."""
        if precision is None:
            return clamp_precision(self.default_precision)
        return clamp_precision(precision)

    def select(self, candidates: Sequence[str], precision: float | None) -> str:
        if not candidates:
            return ""
        if len(candidates) == 1:
            return candidates[0]
        precision = self.resolve(precision)
        if precision > HIGH_PRECISION:
            return min(candidates, key=word_count)
        if precision > DEFAULT_PRECISION:
            ranked = sorted(candidates, key=word_count)
            return ranked[len(ranked) // 2]
        return candidates[0]

    def generate(self, produce: Callable[[], str], precision: float | None) -> str:
        """Draw as many candidates as ``precision`` asks for and pick one."""
        precision = self.resolve(precision)
        candidates: List[str] = [produce() for _ in range(candidate_count(precision))]
        return self.select(candidates, precision)


__all__ = [
    "CandidateSelector",
    "DEFAULT_PRECISION",
    "candidate_count",
    "clamp_precision",
    "word_count",
]
