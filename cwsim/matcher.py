from __future__ import annotations

import math
from difflib import SequenceMatcher
from enum import Enum


class MatchResult(str, Enum):
    PERFECT = "perfect"
    PARTIAL = "partial"
    NONE = "none"


def normalize_call(text: str) -> str:
    """Upper-case, drop whitespace and the '?' used for repeat requests."""
    return "".join(ch for ch in str(text or "").upper() if not ch.isspace() and ch != "?")


def partial_threshold(expected: str) -> int:
    return max(2, math.ceil(len(expected) / 2))


def longest_common_run(a: str, b: str) -> int:
    if not a or not b:
        return 0
    match = SequenceMatcher(None, a, b, autojunk=False).find_longest_match(0, len(a), 0, len(b))
    return match.size


def compare(expected: str, candidate: str) -> MatchResult:
    """
    Classify what the operator copied against the expected callsign.

    PARTIAL covers a proper prefix or suffix of the expected call, or a
    contiguous run shared with it of at least half its length (minimum two
    characters).
    """
    exp = normalize_call(expected)
    cand = normalize_call(candidate)
    if not exp or not cand:
        return MatchResult.NONE
    if exp == cand:
        return MatchResult.PERFECT
    if exp.startswith(cand) or exp.endswith(cand):
        return MatchResult.PARTIAL
    if longest_common_run(exp, cand) >= partial_threshold(exp):
        return MatchResult.PARTIAL
    return MatchResult.NONE
