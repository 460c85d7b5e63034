"""Snippet extraction and term highlighting for search results.

Highlighting happens in Python rather than with ``ts_headline`` so that the
same Kiwi-derived terms drive both Korean and English results, and so that
vector-only hits can be highlighted as well.
"""

from __future__ import annotations

import re

HIGHLIGHT_START = "<mark>"
HIGHLIGHT_END = "</mark>"

SNIPPET_MAX_LENGTH = 200
_SNIPPET_STRIDE = 50
_ELLIPSIS = "..."

_HANGUL_RE = re.compile(r"[\uAC00-\uD7A3\u3131-\u3163\u1100-\u11FF]")


def build_term_pattern(terms: list[str]) -> re.Pattern[str] | None:
    """Compile a case-insensitive pattern matching any of *terms*.

    Longer terms are tried first so ``한국어`` wins over ``한국``. Hangul terms
    match as substrings (particles attach directly to the stem); other terms
    match at a word start and extend over the rest of the word, which covers
    simple inflections such as ``learn`` -> ``learning``.
    """
    usable = sorted({t for t in terms if len(t) >= 2}, key=lambda t: (-len(t), t))
    if not usable:
        return None

    parts = []
    for term in usable:
        escaped = re.escape(term)
        if _HANGUL_RE.search(term):
            parts.append(escaped)
        else:
            parts.append(rf"(?<!\w){escaped}\w*")
    return re.compile("|".join(parts), re.IGNORECASE)


def highlight(
    content: str,
    pattern: re.Pattern[str] | None,
    start: str = HIGHLIGHT_START,
    end: str = HIGHLIGHT_END,
) -> str | None:
    """Return *content* with every match wrapped in *start*/*end*, or None when nothing matches."""
    if pattern is None or not content:
        return None
    highlighted, count = pattern.subn(lambda m: f"{start}{m.group(0)}{end}", content)
    return highlighted if count else None


def build_snippet(
    content: str,
    pattern: re.Pattern[str] | None,
    max_length: int = SNIPPET_MAX_LENGTH,
) -> str | None:
    """Pick the window of *content* covering the most distinct matched terms.

    Windows of *max_length* characters are tried every 50 characters; the
    first window with the highest number of distinct matches wins. The
    result is trimmed to word boundaries and marked with ellipses where it
    was cut.
    """
    if not content:
        return None

    text = content.strip()
    if len(text) <= max_length:
        return text

    matches = list(pattern.finditer(text)) if pattern is not None else []
    best_start = 0
    if matches:
        best_count = 0
        for window_start in range(0, len(text) - max_length + 1, _SNIPPET_STRIDE):
            window_end = window_start + max_length
            distinct = {
                m.group(0).lower() for m in matches if m.start() >= window_start and m.end() <= window_end
            }
            if len(distinct) > best_count:
                best_count = len(distinct)
                best_start = window_start
        if best_count == 0:
            # A single match longer than the stride boundary; center on it.
            best_start = max(0, min(matches[0].start() - _SNIPPET_STRIDE, len(text) - max_length))

    snippet = text[best_start : best_start + max_length]

    if best_start > 0:
        first_space = snippet.find(" ")
        if 0 <= first_space < _SNIPPET_STRIDE // 2:
            snippet = snippet[first_space + 1 :]
        snippet = _ELLIPSIS + snippet

    if best_start + max_length < len(text):
        last_space = snippet.rfind(" ")
        if last_space > len(snippet) * 0.8:
            snippet = snippet[:last_space]
        snippet += _ELLIPSIS

    return snippet
