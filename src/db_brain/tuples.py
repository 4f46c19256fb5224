from __future__ import annotations

from typing import Sequence, Tuple

_SEPARATOR = ","


def encode_token_ids(token_ids: Sequence[int]) -> str:
    """Return the canonical key stored for a node tuple."""
    return _SEPARATOR.join(str(int(tok)) for tok in token_ids)


def decode_token_ids(key: str) -> Tuple[int, ...]:
    if not key:
        return ()
    return tuple(int(tok) for tok in key.split(_SEPARATOR) if tok)


def prefix_pattern(token_ids: Sequence[int]) -> str:
    """GLOB pattern matching every node key whose leading slots equal ``token_ids``."""
    return f"{encode_token_ids(token_ids)}{_SEPARATOR}*"


__all__ = ["encode_token_ids", "decode_token_ids", "prefix_pattern"]
