"""
Image discovery and URL rewriting for legacy post HTML.

BeautifulSoup is used to *find* the ``<img>`` sources, but the rewrite
itself works on the original markup so that nothing else in the HTML is
reformatted.  WordPress markup may carry a URL raw or entity-escaped
(``&amp;`` in query strings), and the same URL may appear in ``src``,
``srcset`` or a surrounding link; every spelling is replaced, but only
where the whole URL stands on its own, never as a prefix of a longer one.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Tag


def _escaped(url: str) -> str:
    return url.replace("&", "&amp;")


def extract_image_urls(html: str, is_destination: Optional[Callable[[str], bool]] = None) -> List[str]:
    """Return the unique ``<img src>`` URLs of ``html`` in document order.

    ``data:`` URIs are ignored, and so are URLs for which ``is_destination``
    returns true (images already on the destination host).
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    urls: List[str] = []
    seen = set()
    for img in soup.find_all("img"):
        if not isinstance(img, Tag):
            continue
        src = img.get("src")
        if not isinstance(src, str):
            continue
        src = src.strip()
        if not src or src.startswith("data:") or src in seen:
            continue
        if is_destination is not None and is_destination(src):
            continue
        seen.add(src)
        urls.append(src)
    return urls


def _url_token(url: str) -> "re.Pattern[str]":
    # A URL counts only as a whole attribute value or srcset/style token.
    return re.compile(r"(?<![^\s'\"=(,])" + re.escape(url) + r"(?![^\s'\"),<])")


def rewrite_html_urls(html: str, mapping: Dict[str, str]) -> str:
    """Replace every occurrence of each old URL in ``mapping`` with its new URL.

    Only whole URLs are replaced: ``http://old/a.png`` in the mapping leaves
    ``http://old/a.png?w=300`` untouched.
    """
    if not html or not mapping:
        return html
    for old, new in mapping.items():
        html = _url_token(old).sub(lambda _: new, html)
        escaped = _escaped(old)
        if escaped != old:
            escaped_new = _escaped(new)
            html = _url_token(escaped).sub(lambda _: escaped_new, html)
    return html
