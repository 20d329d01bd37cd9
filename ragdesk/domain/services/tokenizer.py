# ragdesk/domain/services/tokenizer.py
# Pure domain services: no I/O, deterministic, no external libraries.
"""Approximate tokenizer used for chunk budgeting.

Each CJK code point counts as one token, each maximal run of other
letters/digits counts as one token. Punctuation and whitespace are free.
Stable and monotonic, not model-accurate.
"""
from __future__ import annotations

from typing import NamedTuple

_CJK_RANGES = (
    (0x4E00, 0x9FFF),
    (0x3400, 0x4DBF),
    (0x20000, 0x2A6DF),
)
_MAX_LATIN1 = 0xFF


class TokenSpan(NamedTuple):
    start: int
    end: int


def is_cjk(ch: str) -> bool:
    cp = ord(ch)
    return any(lo <= cp <= hi for lo, hi in _CJK_RANGES)


def _is_word_char(ch: str) -> bool:
    return ch.isalpha() or ch.isdecimal()


def token_spans(text: str) -> list[TokenSpan]:
    """Return [start, end) character offsets of every token in ``text``.

    >>> token_spans("ab 12 中文")
    [TokenSpan(start=0, end=2), TokenSpan(start=3, end=5), TokenSpan(start=6, end=7), TokenSpan(start=7, end=8)]
    """
    out: list[TokenSpan] = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if is_cjk(ch):
            out.append(TokenSpan(i, i + 1))
            i += 1
        elif _is_word_char(ch):
            start = i
            i += 1
            while i < n and _is_word_char(text[i]) and not is_cjk(text[i]):
                i += 1
            out.append(TokenSpan(start, i))
        else:
            i += 1
    return out


def estimate_tokens(text: str) -> int:
    return len(token_spans(text))


def detect_language(text: str) -> str:
    """Return "zh", "en" or "" depending on which script dominates."""
    cjk = latin = 0
    for ch in text:
        if is_cjk(ch):
            cjk += 1
        elif ord(ch) <= _MAX_LATIN1 and _is_word_char(ch):
            latin += 1
    if cjk >= 10 and cjk >= latin:
        return "zh"
    if latin >= 10 and latin > cjk:
        return "en"
    return ""
