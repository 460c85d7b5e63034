"""Query preprocessor with Korean morpheme analysis via kiwipiepy.

Sanitizes raw search text, derives the normalized form used for cache keys
and history de-duplication, extracts Korean morphemes, and builds
the ``to_tsquery`` expression for PostgreSQL full-text search.
"""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache
from typing import NamedTuple

from kiwipiepy import Kiwi


class QueryAnalysis(NamedTuple):
    """Result of analyzing a search query.

    Attributes:
        original: The original query string.
        normalized: Sanitized, NFC-normalized text (case preserved).
        terms: Lower-cased, punctuation-free match terms (Kiwi morphemes for
            Hangul text plus the whitespace tokens).
        tsquery_expr: OR-joined ``to_tsquery`` expression, "" when nothing survives.
    """

    original: str
    normalized: str
    terms: list[str]
    tsquery_expr: str


# Kiwi POS tags for content words
_CONTENT_TAGS = {"NNG", "NNP", "VV", "VA", "SL"}

# Regex: at least one Hangul character
_HANGUL_RE = re.compile(r"[\uAC00-\uD7A3\u3131-\u3163\u1100-\u11FF]")
# Regex: at least one Latin letter
_LATIN_RE = re.compile(r"[a-zA-Z]")

_UNSAFE_CHARS_RE = re.compile(r"[<>'\"]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w]+")


@lru_cache(maxsize=1)
def _get_kiwi() -> Kiwi:
    """Return a cached Kiwi instance (singleton)."""
    return Kiwi()


def sanitize_query(query: str) -> str:
    """Strip markup and quote characters, collapse whitespace, NFC-normalize."""
    cleaned = _UNSAFE_CHARS_RE.sub("", query)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return unicodedata.normalize("NFC", cleaned)


def normalize_query(query: str) -> str:
    """Return the canonical form used for cache keys and history uniqueness."""
    return sanitize_query(query).lower()


def _detect_language(text: str) -> str:
    """Detect the primary language of a text string.

    Returns:
        "ko" if only Hangul, "en" if only Latin, "mixed" otherwise.
    """
    has_korean = bool(_HANGUL_RE.search(text))
    has_english = bool(_LATIN_RE.search(text))

    if has_korean and has_english:
        return "mixed"
    if has_korean:
        return "ko"
    return "en"


def _extract_korean_morphemes(text: str) -> list[str]:
    """Extract content-word morphemes from Korean text using Kiwi.

    Extracts nouns (NNG, NNP), verbs (VV), adjectives (VA),
    and foreign words (SL) as base forms.

    Args:
        text: Input text to analyze.

    Returns:
        List of base-form morphemes (deduplicated, order-preserved).
    """
    kiwi = _get_kiwi()
    result = kiwi.tokenize(text)

    seen: set[str] = set()
    morphemes: list[str] = []
    for token in result:
        if token.tag in _CONTENT_TAGS and token.form not in seen:
            seen.add(token.form)
            morphemes.append(token.form)

    return morphemes


def _collect_terms(morphemes: list[str], original_tokens: list[str]) -> list[str]:
    """Merge morphemes and whitespace tokens into unique lexeme-safe terms.

    Everything but word characters is removed, so no tsquery operator can
    survive into the expression.
    """
    seen: set[str] = set()
    terms: list[str] = []

    for candidate in [*morphemes, *original_tokens]:
        term = _NON_WORD_RE.sub("", candidate.lower())
        if term and term not in seen:
            seen.add(term)
            terms.append(term)

    return terms


def _build_tsquery_expr(terms: list[str]) -> str:
    """Build an OR-joined ``to_tsquery`` expression.

    Hangul terms become prefix terms (``'처리':*``) so that a stem still
    matches words carrying particles, e.g. ``처리는``.

    Returns:
        An expression such as ``'machine' | 'learning'``; "" if no terms.
    """
    parts = []
    for term in terms:
        part = f"'{term}'"
        if _HANGUL_RE.search(term):
            part += ":*"
        parts.append(part)
    return " | ".join(parts)


def analyze_query(query: str) -> QueryAnalysis:
    """Derive match terms and the tsquery expression from a search query.

    Hangul or mixed text goes through Kiwi so that stems such as ``세포``
    are matched without their particles; other text is split on whitespace.
    Queries that sanitize to nothing yield empty ``terms`` and ``tsquery_expr``.
    """
    normalized = sanitize_query(query)
    if not normalized:
        return QueryAnalysis(original=query, normalized="", terms=[], tsquery_expr="")

    tokens = normalized.split()
    if _detect_language(normalized) in ("ko", "mixed"):
        morphemes = _extract_korean_morphemes(normalized)
    else:
        morphemes = []
    terms = _collect_terms(morphemes, tokens)

    return QueryAnalysis(
        original=query,
        normalized=normalized,
        terms=terms,
        tsquery_expr=_build_tsquery_expr(terms),
    )
