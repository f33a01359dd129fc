"""Keyword matching: maps transaction descriptions to categories.

Descriptions and keywords are compared after the same normalization:
case-folded, with everything except Latin letters, digits, whitespace and
Hebrew characters removed. A keyword matches when its normalized form is a
substring of the normalized description.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from fundsync.database.models import Category

_STRIP_RE = re.compile(r"[^\u0590-\u05FFa-z0-9\s]")


@dataclass
class KeywordMatch:
    """Result of a keyword match."""
    category: Category
    keyword: str


@dataclass
class Suggestion:
    category: str
    confidence: float


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    return _STRIP_RE.sub("", text.casefold()).strip()


def match_keywords(
    description: str,
    categories: Iterable[Category],
) -> KeywordMatch | None:
    """First category (in the given order) with a keyword in the description.

    The Unknown category never matches. Keywords that normalize to an
    empty string are ignored.
    """
    desc = normalize_text(description)
    if not desc:
        return None

    for category in categories:
        if category.is_unknown:
            continue
        for keyword in category.keywords:
            needle = normalize_text(keyword)
            if needle and needle in desc:
                return KeywordMatch(category=category, keyword=keyword)
    return None


def score_suggestions(
    description: str,
    categories: Iterable[Category],
    top_n: int = 3,
) -> list[Suggestion]:
    """Rank categories by the share of their keyword tokens in the description.

    Score = matched keyword tokens / total keyword tokens, capped at 1.0.
    Categories scoring zero are left out. Ties keep category order.
    """
    desc_tokens = set(normalize_text(description).split())
    scores: list[Suggestion] = []

    for category in categories:
        if category.is_unknown or not category.keywords:
            continue

        total = 0
        matched = 0
        for keyword in category.keywords:
            tokens = normalize_text(keyword).split()
            total += len(tokens)
            matched += sum(1 for t in tokens if t in desc_tokens)

        if matched and total:
            scores.append(Suggestion(
                category=category.name,
                confidence=min(matched / total, 1.0),
            ))

    scores.sort(key=lambda s: s.confidence, reverse=True)
    return scores[:top_n]
