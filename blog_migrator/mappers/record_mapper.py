"""
Projection of tokenized rows into typed legacy records.

Rows are first zipped with their Column Schema (:func:`map_row`), then
projected per entity by :class:`RecordMapper`:

* users from the ``users`` table;
* terms from an inner join of ``terms`` and ``term_taxonomy`` on
  ``term_id``;
* posts and pages from ``posts``, with categories and tags joined through
  ``term_relationships``, the author joined from ``users`` and the
  featured image resolved through the ``_thumbnail_id`` post meta to the
  attachment's ``guid``.

Every tolerant fallback (short rows, unparsable dates, orphan joins,
unknown statuses) is counted on the shared :class:`Diagnostics`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from blog_migrator.extractors.sql_dump import DumpTables
from blog_migrator.models.records import ImageReference, LegacyPost, LegacyTerm, LegacyUser, TermRef
from blog_migrator.utils.errors import Diagnostics
from blog_migrator.utils.terms import normalize_label

logger = logging.getLogger(__name__)

STATUS_MAP: Dict[str, str] = {
    "publish": "published",
    "future": "scheduled",
    "draft": "draft",
    "private": "draft",
    "pending": "draft",
}
EXCLUDED_STATUSES = frozenset({"trash"})
RETAINED_TYPES = ("post", "page")
ZERO_DATES = frozenset({"0000-00-00 00:00:00", "0000-00-00"})
_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%a, %d %b %Y %H:%M:%S %z",
)


def map_row(
    columns: Sequence[str],
    row: Sequence[Optional[str]],
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, Optional[str]]:
    """Zip a Column Schema with a row.  Missing trailing values become ``None``."""
    if len(row) != len(columns) and diagnostics is not None:
        diagnostics.record("row_width_mismatch", f"{len(row)} values for {len(columns)} columns")
    return {col: (row[index] if index < len(row) else None) for index, col in enumerate(columns)}


def normalize_status(status: Optional[str], diagnostics: Optional[Diagnostics] = None) -> Optional[str]:
    """Map a legacy post status to the destination status.

    ``None`` means the record is excluded (trashed) and must not be emitted.
    """
    key = (status or "").strip().lower()
    if key in EXCLUDED_STATUSES:
        return None
    mapped = STATUS_MAP.get(key)
    if mapped is None:
        if diagnostics is not None:
            diagnostics.record("unknown_status", key or "<empty>")
        return "draft"
    return mapped


def parse_date(
    value: Optional[str],
    diagnostics: Optional[Diagnostics] = None,
    field: str = "date",
) -> Optional[datetime]:
    """Parse a legacy date into an aware UTC datetime, ``None`` if impossible.

    Naive values are taken as UTC.  WordPress zero dates are the legacy
    spelling of "no date" and map to ``None`` without a warning.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text or text in ZERO_DATES:
        return None

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        logger.warning("Invalid %s %r mapped to null", field, text)
        if diagnostics is not None:
            diagnostics.record("invalid_date", f"{field}={text}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class RecordMapper:
    """Projects the tables of one dump into users, terms and posts."""

    def __init__(
        self,
        tables: DumpTables,
        diagnostics: Optional[Diagnostics] = None,
        *,
        old_domain: str = "",
    ) -> None:
        self.tables = tables
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.old_domain = old_domain.rstrip("/")
        self._mapped: Dict[str, List[Dict[str, Optional[str]]]] = {}
        self._users: Optional[List[LegacyUser]] = None
        self._terms: Optional[List[LegacyTerm]] = None

    def records(self, name: str) -> List[Dict[str, Optional[str]]]:
        """Rows of table ``name`` zipped with its columns (cached)."""
        if name not in self._mapped:
            table = self.tables.get(name)
            self._mapped[name] = [map_row(table.columns, row, self.diagnostics) for row in table.rows]
        return self._mapped[name]

    # Users -------------------------------------------------------------

    def users(self) -> List[LegacyUser]:
        if self._users is not None:
            return self._users
        users: List[LegacyUser] = []
        for record in self.records("users"):
            legacy_id = _to_int(record.get("ID"), None)
            if legacy_id is None:
                self.diagnostics.record("invalid_record", f"user without ID: {record.get('user_login')}")
                continue
            users.append(
                LegacyUser(
                    legacy_id=legacy_id,
                    name=record.get("display_name") or record.get("user_nicename") or record.get("user_login") or "Unknown",
                    email=record.get("user_email") or "",
                    username=record.get("user_login") or "",
                    website=record.get("user_url") or "",
                    registered_at=parse_date(record.get("user_registered"), self.diagnostics, "user_registered"),
                )
            )
        logger.info("Mapped %d users", len(users))
        self._users = users
        return users

    # Terms -------------------------------------------------------------

    def terms(self) -> List[LegacyTerm]:
        """Inner join of Term and Term-Taxonomy rows on ``term_id``."""
        if self._terms is not None:
            return self._terms
        by_term_id: Dict[int, Mapping[str, Optional[str]]] = {}
        for record in self.records("terms"):
            term_id = _to_int(record.get("term_id"), None)
            if term_id is not None:
                by_term_id[term_id] = record

        terms: List[LegacyTerm] = []
        for record in self.records("term_taxonomy"):
            term_id = _to_int(record.get("term_id"), None)
            term = by_term_id.get(term_id) if term_id is not None else None
            if term is None:
                self.diagnostics.record(
                    "orphan_taxonomy",
                    f"term_taxonomy_id={record.get('term_taxonomy_id')} term_id={record.get('term_id')}",
                )
                continue
            terms.append(
                LegacyTerm(
                    legacy_id=term_id,
                    taxonomy_id=_to_int(record.get("term_taxonomy_id"), term_id),
                    taxonomy=record.get("taxonomy") or "",
                    name=normalize_label(term.get("name") or ""),
                    slug=term.get("slug") or "",
                    description=record.get("description") or "",
                    count=_to_int(record.get("count")) or 0,
                    parent=_to_int(record.get("parent")) or 0,
                )
            )
        logger.info(
            "Mapped %d categories and %d tags",
            sum(1 for t in terms if t.is_category),
            sum(1 for t in terms if t.is_tag),
        )
        self._terms = terms
        return terms

    # Posts -------------------------------------------------------------

    def _featured_images(self, rows: Iterable[Mapping[str, Optional[str]]]) -> Dict[int, ImageReference]:
        attachments: Dict[int, str] = {}
        for record in rows:
            if record.get("post_type") == "attachment" and record.get("guid"):
                attachments[_to_int(record.get("ID"), -1)] = record["guid"]

        thumbnails: Dict[int, int] = {}
        alts: Dict[int, str] = {}
        for meta in self.records("postmeta"):
            key = meta.get("meta_key")
            post_id = _to_int(meta.get("post_id"), None)
            if post_id is None:
                continue
            if key == "_thumbnail_id":
                thumbnails[post_id] = _to_int(meta.get("meta_value"), -1)
            elif key == "_wp_attachment_image_alt" and meta.get("meta_value"):
                alts[post_id] = meta["meta_value"]

        images: Dict[int, ImageReference] = {}
        for post_id, attachment_id in thumbnails.items():
            url = attachments.get(attachment_id)
            if url is None:
                logger.debug("Post %s points at missing attachment %s", post_id, attachment_id)
                continue
            reference = ImageReference.from_legacy(url, alt=alts.get(attachment_id))
            if reference is not None:
                images[post_id] = reference
        return images

    def _permalink(self, record: Mapping[str, Optional[str]]) -> Optional[str]:
        if self.old_domain and record.get("post_name"):
            return f"{self.old_domain}/{record['post_name']}/"
        return record.get("guid")

    def posts(self) -> List[LegacyPost]:
        rows = self.records("posts")
        users = {user.legacy_id: user.name for user in self.users()}
        by_taxonomy_id = {term.taxonomy_id: term for term in self.terms()}
        featured = self._featured_images(rows)

        relationships: Dict[int, List[int]] = {}
        for rel in self.records("term_relationships"):
            object_id = _to_int(rel.get("object_id"), None)
            ttid = _to_int(rel.get("term_taxonomy_id"), None)
            if object_id is not None and ttid is not None:
                relationships.setdefault(object_id, []).append(ttid)

        posts: List[LegacyPost] = []
        dropped_types = 0
        for record in rows:
            if record.get("post_type") not in RETAINED_TYPES:
                dropped_types += 1
                continue
            legacy_id = _to_int(record.get("ID"), None)
            if legacy_id is None:
                self.diagnostics.record("invalid_record", f"post without ID: {record.get('post_title')}")
                continue
            status = normalize_status(record.get("post_status"), self.diagnostics)
            if status is None:
                self.diagnostics.record("excluded_trash", str(legacy_id))
                continue

            categories: List[TermRef] = []
            tags: List[TermRef] = []
            for ttid in relationships.get(legacy_id, []):
                term = by_taxonomy_id.get(ttid)
                if term is None:
                    self.diagnostics.record("orphan_relationship", f"post={legacy_id} term_taxonomy_id={ttid}")
                elif term.is_category:
                    categories.append(term.ref())
                elif term.is_tag:
                    tags.append(term.ref())

            published = parse_date(record.get("post_date_gmt"), self.diagnostics, "post_date_gmt") or parse_date(
                record.get("post_date"), self.diagnostics, "post_date"
            )
            modified = parse_date(record.get("post_modified_gmt"), self.diagnostics, "post_modified_gmt") or parse_date(
                record.get("post_modified"), self.diagnostics, "post_modified"
            )
            author_id = _to_int(record.get("post_author"), None)
            posts.append(
                LegacyPost(
                    legacy_id=legacy_id,
                    title=record.get("post_title") or "",
                    slug=record.get("post_name") or "",
                    content=record.get("post_content") or "",
                    excerpt=record.get("post_excerpt") or "",
                    status=status,
                    legacy_status=record.get("post_status"),
                    post_type=record.get("post_type") or "post",
                    author_id=author_id,
                    author_name=users.get(author_id) or f"Author {author_id if author_id is not None else 'unknown'}",
                    published_at=published,
                    created_at=published,
                    updated_at=modified,
                    guid=record.get("guid"),
                    permalink=self._permalink(record),
                    categories=tuple(categories),
                    tags=tuple(tags),
                    featured_image=featured.get(legacy_id),
                )
            )
        logger.info("Mapped %d posts/pages (%d rows of other types dropped)", len(posts), dropped_types)
        return posts


def post_from_export(item: Mapping[str, Any], diagnostics: Optional[Diagnostics] = None) -> Optional[LegacyPost]:
    """Project one entry of a REST-fetcher ``posts.json`` export.

    The fetcher already renamed ``publish`` to ``published``; other statuses
    go through :func:`normalize_status`.  Returns ``None`` for excluded or
    unusable entries.
    """
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    meta = item.get("meta") or {}
    legacy_id = _to_int(item.get("id", meta.get("wordpressId")), None)
    if legacy_id is None:
        diagnostics.record("invalid_record", f"export entry without id: {item.get('title')}")
        return None

    raw_status = item.get("status")
    if raw_status in ("published", "scheduled"):
        status: Optional[str] = raw_status
    else:
        status = normalize_status(raw_status, diagnostics)
    if status is None:
        diagnostics.record("excluded_trash", str(legacy_id))
        return None

    post_type = item.get("type") or "post"
    if post_type not in RETAINED_TYPES:
        return None

    def refs(values: Any) -> tuple:
        out = []
        for value in values or []:
            if isinstance(value, dict):
                term_id = _to_int(value.get("id"), 0) or 0
                out.append(TermRef(legacy_id=term_id, name=normalize_label(value.get("name") or ""), slug=value.get("slug") or ""))
            elif isinstance(value, str) and value.strip():
                out.append(TermRef(legacy_id=0, name=normalize_label(value), slug=""))
        return tuple(out)

    author = item.get("author") or {}
    published = parse_date(item.get("publishedAt"), diagnostics, "publishedAt")
    return LegacyPost(
        legacy_id=legacy_id,
        title=item.get("title") or "",
        slug=item.get("slug") or "",
        content=item.get("content") or item.get("contentHtml") or "",
        excerpt=item.get("excerpt") or "",
        status=status,
        legacy_status=raw_status,
        post_type=post_type,
        author_id=_to_int(author.get("uid"), None),
        author_name=author.get("name") or "Unknown Author",
        published_at=published,
        created_at=parse_date(item.get("createdAt"), diagnostics, "createdAt") or published,
        updated_at=parse_date(item.get("updatedAt"), diagnostics, "updatedAt"),
        permalink=item.get("canonical") or item.get("link") or None,
        categories=refs(item.get("categories")),
        tags=refs(item.get("tags")),
        featured_image=ImageReference.from_legacy(item.get("featuredImage")),
        source="wordpress_api",
    )
