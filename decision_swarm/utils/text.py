"""Text similarity utilities: mixed Chinese/English tokens, Jaccard, dedup."""

from __future__ import annotations

import re
from urllib.parse import urlparse

_WORD_RE = re.compile(r"[a-z0-9]+(?:\.[0-9]+)?")
_CJK_RUN_RE = re.compile(r"[一-鿿]+")


def tokenize(text: str) -> set[str]:
    """Tokens for overlap scoring.

    Latin words and numbers are split on non-alphanumerics; runs of CJK
    characters contribute character bigrams (a lone character stands alone).
    """
    lowered = text.lower()
    tokens = set(_WORD_RE.findall(lowered))
    for run in _CJK_RUN_RE.findall(lowered):
        if len(run) == 1:
            tokens.add(run)
            continue
        tokens.update(run[i : i + 2] for i in range(len(run) - 1))
    return tokens


def jaccard_score(a: str, b: str) -> float:
    """Normalized token overlap (Jaccard similarity) between two strings."""
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def is_duplicate(new_text: str, existing: list[str], threshold: float = 0.7) -> bool:
    """Check if a title/snippet is a near-duplicate of any existing one.

    Jaccard over mixed tokens, plus substring containment as a fallback.
    """
    if not tokenize(new_text):
        return True

    new_lower = new_text.lower().strip()
    for other in existing:
        if jaccard_score(new_text, other) >= threshold:
            return True
        other_lower = other.lower().strip()
        if other_lower and (new_lower in other_lower or other_lower in new_lower):
            return True
    return False


def hostname(url: str) -> str:
    """Lowercased hostname with a leading ``www.`` removed; "" if unparsable."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_url(url: str) -> str:
    """Canonical form for URL dedup: scheme-less, no query/fragment, no trailing slash."""
    host = hostname(url)
    if not host:
        return url.strip().lower()
    try:
        path = urlparse(url).path
    except ValueError:
        path = ""
    return f"{host}{path.rstrip('/')}"
