"""Trigram string similarity.

Follows pg_trgm semantics: text is lower-cased and split into words on
non-alphanumeric characters, each word is padded with two spaces in front
and one behind, and similarity is the Jaccard overlap of the two trigram
sets.
"""

import re

_WORD_RE = re.compile(r"[^\W_]+")


def trigrams(text: str) -> frozenset[str]:
    """Return the set of trigrams of a text.

    Example:
        >>> sorted(trigrams("cat"))
        ['  c', ' ca', 'at ', 'cat']
    """
    grams: set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i : i + 3])
    return frozenset(grams)


def trigram_overlap(a: frozenset[str], b: frozenset[str]) -> float:
    """Similarity of two precomputed trigram sets."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def similarity(a: str | None, b: str | None) -> float:
    """Trigram similarity of two strings, between 0.0 and 1.0."""
    if not a or not b:
        return 0.0
    return trigram_overlap(trigrams(a), trigrams(b))


def icontains(haystack: str | None, needle: str | None) -> int:
    """Case-insensitive substring test, 1 or 0 for use as an SQL function."""
    if haystack is None or not needle:
        return 0
    return int(needle.casefold() in haystack.casefold())
