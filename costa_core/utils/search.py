"""
Text search helpers for catalog listings.

A query matches when every word in it appears in the text, in any order,
case-insensitively. An empty query matches everything.
"""

from typing import Iterable, List, Optional


def _query_words(query: Optional[str]) -> List[str]:
    if not query:
        return []
    return [word for word in query.lower().split() if word]


def search_multi_word(text: Optional[str], query: Optional[str]) -> bool:
    """
    Check that all words of the query are present in the text.

    Usage:
        search_multi_word("Polpa de Maracuja 1kg", "maracuja polpa")  # True
    """
    words = _query_words(query)
    if not words:
        return True
    if not text:
        return False

    normalized = text.lower().strip()
    return all(word in normalized for word in words)


def search_in_fields(fields: Iterable[Optional[str]], query: Optional[str]) -> bool:
    """True if at least one single field contains every query word."""
    if not _query_words(query):
        return True
    return any(search_multi_word(field, query) for field in fields)


def search_across_fields(fields: Iterable[Optional[str]], query: Optional[str]) -> bool:
    """True if every query word appears somewhere across the fields combined."""
    words = _query_words(query)
    if not words:
        return True

    combined = " ".join(str(field).lower() for field in fields if field)
    return all(word in combined for word in words)
