"""Lexical score of how well a place search result matches a free-text mention."""

from __future__ import annotations

import re

from linkimport.core.constants import MatchThresholds

_TOKEN_RE = re.compile(r"[^\W_]+")

_STOP_WORDS = frozenset({"the", "a", "an", "and", "or", "in", "at", "to", "of", "for", "on", "near"})


def _significant_tokens(value: str) -> list[str]:
    return [
        token
        for token in _TOKEN_RE.findall(value)
        if len(token) >= 2 and token not in _STOP_WORDS
    ]


def score_place_match(query: str, candidate_name: str) -> float:
    """Score candidate_name against query in [0, 1].

    1.0 for an exact (case-insensitive) match, 0.95 when the name contains the
    whole query, otherwise the fraction of significant query tokens found in
    the name. No typo tolerance: precision matters more than recall here.
    """
    query_normalized = str(query or "").lower().strip()
    name_normalized = str(candidate_name or "").lower().strip()
    if not query_normalized or not name_normalized:
        return 0.0
    if name_normalized == query_normalized:
        return MatchThresholds.EXACT
    if query_normalized in name_normalized:
        return MatchThresholds.SUBSTRING

    query_tokens = _significant_tokens(query_normalized)
    if not query_tokens:
        return 0.0

    name_tokens = set(_significant_tokens(name_normalized))
    hits = sum(1 for token in query_tokens if token in name_tokens)
    return hits / len(query_tokens)
