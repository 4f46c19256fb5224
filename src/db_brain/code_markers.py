from __future__ import annotations

import re
from typing import Tuple

DEFAULT_FILETYPE = "text"

_FILETYPE_RE = re.compile(r"^// FILETYPE: (\w+)$", re.MULTILINE)
_CURSOR_MARKER_RE = re.compile(r"^// (?:AFTER CURSOR|CONTEXT AFTER):.*$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_GO_KEYWORD_PAREN_RE = re.compile(r"\b(if|for|switch|func)\(")
_LUA_FUNCTION_RE = re.compile(r"function\s*([A-Za-z0-9_.]+)\s*\(")
_JS_FILETYPES = {"javascript", "typescript", "jsx", "tsx"}

__all__ = [
    "DEFAULT_FILETYPE",
    "balance_brackets",
    "extract_code_metadata",
    "limit_words",
    "post_process_reply",
]


def extract_code_metadata(text: str) -> Tuple[str, str]:
    """
    Pull the ``// FILETYPE: name`` marker out of an editor payload.

    Returns (filetype, cleaned_text); cursor marker lines are dropped as well.
    """
    filetype = DEFAULT_FILETYPE
    match = _FILETYPE_RE.search(text)
    if match:
        filetype = match.group(1)
        text = _FILETYPE_RE.sub("", text)
    text = _CURSOR_MARKER_RE.sub("", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return filetype, text.strip()


def balance_brackets(text: str, opening: str, closing: str) -> str:
    """Append the closers needed to match unbalanced openers."""
    missing = text.count(opening) - text.count(closing)
    if missing > 0:
        text += closing * missing
    return text


def _dedent_leading(reply: str) -> str:
    lines = reply.split("\n")
    if len(lines) < 2:
        return reply
    first = lines[0]
    indent = first[: len(first) - len(first.lstrip(" \t"))]
    if not indent:
        return reply
    return "\n".join(line[len(indent) :] if line.startswith(indent) else line for line in lines)


def post_process_reply(reply: str, filetype: str) -> str:
    """Small per-language fixups applied to generated completions."""
    if not filetype or filetype == DEFAULT_FILETYPE:
        return reply
    if filetype == "go":
        reply = balance_brackets(reply, "{", "}")
        reply = balance_brackets(reply, "(", ")")
        reply = _GO_KEYWORD_PAREN_RE.sub(r"\1 (", reply)
    elif filetype in _JS_FILETYPES:
        reply = balance_brackets(reply, "{", "}")
        reply = balance_brackets(reply, "(", ")")
        reply = balance_brackets(reply, "[", "]")
    elif filetype == "python":
        reply = _dedent_leading(reply)
    elif filetype == "lua":
        reply = _LUA_FUNCTION_RE.sub(r"function \1(", reply)
        if "function " in reply and "end" not in reply:
            reply += "\nend"
    return reply


def limit_words(text: str, max_words: int | None) -> str:
    """Keep the first ``max_words`` words; no ellipsis is added."""
    if not max_words or max_words <= 0:
        return text
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])
