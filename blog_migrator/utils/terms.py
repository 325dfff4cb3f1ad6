from __future__ import annotations

from html import unescape
import re
from typing import Iterable, List


def normalize_label(value: str) -> str:
    """Unescape HTML entities and collapse inner whitespace.

    WordPress stores term names HTML-encoded (``Tips &amp; Tricks``).
    Preserves original casing but trims leading/trailing spaces
    and converts sequences of whitespace to a single space.
    """
    if not value:
        return ""
    text = unescape(value).strip()
    # Collapse multiple whitespace to single space
    text = re.sub(r"\s+", " ", text)
    return text


def dedupe_labels(labels: Iterable[str]) -> List[str]:
    """
    Normalize labels and deduplicate them case-insensitively while
    preserving the first-seen casing and order.
    """
    seen_lower = set()
    result: List[str] = []
    for raw in labels:
        label = normalize_label(raw)
        key = label.lower()
        if label and key not in seen_lower:
            seen_lower.add(key)
            result.append(label)
    return result
