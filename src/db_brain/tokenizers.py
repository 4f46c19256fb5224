from __future__ import annotations

import re
from typing import List, Protocol

SPACE = " "
PUNCTUATION = ",.!?;:"

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\w", re.UNICODE)


class Tokenizer(Protocol):
    """Splits raw text into atomic tokens, whitespace runs included as ``" "``."""

    name: str

    def split(self, text: str) -> List[str]:
        """Return the ordered token strings for ``text`` (empty input -> empty list)."""


def is_word(token: str) -> bool:
    """True when the token holds at least one letter, digit or underscore."""
    return bool(_WORD_RE.search(token))


class SentenceTokenizer:
    """Punctuation aware splitter (the "cobe" strategy).

    Whitespace is collapsed first; runs of anything that is neither a space nor
    one of ``,.!?;:`` form a token, every punctuation mark stands alone and
    each space becomes its own ``" "`` token.
    """

    name = "cobe"

    def split(self, text: str) -> List[str]:
        text = _WHITESPACE_RE.sub(SPACE, text.strip())
        tokens: List[str] = []
        buffer: List[str] = []
        for char in text:
            if char == SPACE or char in PUNCTUATION:
                if buffer:
                    tokens.append("".join(buffer))
                    buffer = []
                tokens.append(char)
            else:
                buffer.append(char)
        if buffer:
            tokens.append("".join(buffer))
        return tokens


class AlnumTokenizer:
    """Alphanumeric-run splitter (the "megahal" strategy).

    Tokens are maximal runs of alphanumerics or of other non-space characters.
    Spaces are emitted one by one and are never collapsed.
    """

    name = "megahal"

    def split(self, text: str) -> List[str]:
        tokens: List[str] = []
        buffer: List[str] = []
        in_word = False
        for char in text:
            alnum = char.isalnum()
            if alnum != in_word:
                if buffer:
                    tokens.append("".join(buffer))
                    buffer = []
                in_word = alnum
            if char == SPACE:
                if buffer:
                    tokens.append("".join(buffer))
                    buffer = []
                tokens.append(SPACE)
                in_word = False
            else:
                buffer.append(char)
        if buffer:
            tokens.append("".join(buffer))
        return tokens


_TOKENIZERS = {
    SentenceTokenizer.name: SentenceTokenizer,
    AlnumTokenizer.name: AlnumTokenizer,
}


def available_tokenizers() -> List[str]:
    return sorted(_TOKENIZERS)


def build_tokenizer(name: str) -> Tokenizer:
    key = (name or "").strip().lower()
    try:
        return _TOKENIZERS[key]()
    except KeyError:
        raise ValueError(
            f"unknown tokenizer '{name}' (expected one of: {', '.join(available_tokenizers())})"
        ) from None


__all__ = [
    "SPACE",
    "Tokenizer",
    "SentenceTokenizer",
    "AlnumTokenizer",
    "available_tokenizers",
    "build_tokenizer",
    "is_word",
]
