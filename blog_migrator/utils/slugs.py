from __future__ import annotations

import re
import unicodedata
from typing import Callable, Iterable, Optional

MAX_SLUG_LENGTH = 200


def _strip_accents(text: str) -> str:
    return "".join(
        c for c in unicodedata.normalize("NFD", text) if unicodedata.category(c) != "Mn"
    )


def slugify(value: Optional[str]) -> str:
    """
    Derive a URL slug from a title.

    - Lowercases and folds accents (``Café`` -> ``cafe``)
    - Drops every character outside ``[a-z0-9]``, spaces and hyphens
    - Collapses whitespace runs into single hyphens, then hyphen runs

    Returns an empty string when nothing usable remains.
    """
    if not value:
        return ""
    text = _strip_accents(value).lower()
    text = re.sub(r"[^a-z0-9\s-]", "", text)
    text = re.sub(r"\s+", "-", text.strip())
    text = re.sub(r"-+", "-", text).strip("-")
    return text[:MAX_SLUG_LENGTH].rstrip("-")


def candidate_slugs(base: str) -> Iterable[str]:
    """Yield ``base``, ``base-1``, ``base-2``, ... without end."""
    yield base
    counter = 1
    while True:
        yield f"{base}-{counter}"
        counter += 1


def resolve_unique_slug(base: str, is_taken: Callable[[str], bool]) -> str:
    """Return the first candidate of ``base`` for which ``is_taken`` is false.

    ``is_taken`` must reflect the current destination state; each call is a
    fresh lookup, so reruns see the slugs earlier runs already wrote.
    """
    for candidate in candidate_slugs(base):
        if not is_taken(candidate):
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover
