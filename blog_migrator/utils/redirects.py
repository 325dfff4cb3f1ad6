"""
Redirect map from legacy permalinks to the migrated URLs.

Every migrated post or page yields one :class:`Redirect`.  Its ``source``
is the path (and query string) of the legacy permalink, which is what the
new site's redirect middleware matches against; trailing slashes are
dropped the same way the middleware normalizes request paths.  Its
``target`` is the absolute URL of the migrated document.

Records without a legacy permalink produce no row, and neither do records
whose URL did not change.
"""

from __future__ import annotations

import csv
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

from blog_migrator.models.records import LegacyPost

REDIRECT_MAP = os.path.join("reports", "redirect_map.csv")
DRY_RUN_REDIRECT_MAP = os.path.join("reports", "redirect_map.dry-run.csv")


@dataclass(frozen=True)
class Redirect:
    source: str
    target: str
    status: int = 301


def legacy_path(url: str) -> str:
    """``/2019/05/hello/?p=1`` style path of ``url``, without the trailing slash."""
    parts = urlsplit(url)
    path = parts.path.rstrip("/") or "/"
    return f"{path}?{parts.query}" if parts.query else path


def redirect_for(post: LegacyPost, slug: str, new_base: str) -> Optional[Redirect]:
    """The redirect for ``post`` once migrated under ``slug``, if one is needed."""
    if not post.permalink or not new_base:
        return None
    source = legacy_path(post.permalink)
    target = f"{new_base.rstrip('/')}/{slug}"
    if legacy_path(target) == source:
        return None
    return Redirect(source, target)


def write_redirect_map(redirects: Iterable[Redirect], out_path: str = REDIRECT_MAP) -> str:
    """Write ``from,to,type`` rows, keeping the first redirect for each source path.

    Returns the path of the written file.
    """
    seen = set()
    rows: List[Redirect] = []
    for redirect in redirects:
        if redirect.source in seen:
            continue
        seen.add(redirect.source)
        rows.append(redirect)

    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["from", "to", "type"])
        for redirect in rows:
            writer.writerow([redirect.source, redirect.target, redirect.status])
    return out_path
