"""
Typed legacy records produced by the record mapper.

Records are frozen: every transformation builds a new record with
``model_copy(update=...)`` instead of mutating the one it received.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImageReference(BaseModel):
    """A source image URL found in a record, plus its destination id once migrated."""

    model_config = ConfigDict(frozen=True)

    source_url: str = Field(..., min_length=1)
    destination_id: Optional[str] = None
    alt: Optional[str] = None

    @field_validator("source_url", mode="before")
    @classmethod
    def _strip(cls, v: Any):
        return v.strip() if isinstance(v, str) else v

    @property
    def cache_key(self) -> str:
        # The full URL, query string included: signed URLs differ per object.
        return self.source_url

    @property
    def is_migrated(self) -> bool:
        return bool(self.destination_id)

    def with_destination(self, destination_id: str) -> "ImageReference":
        return self.model_copy(update={"destination_id": destination_id})

    @classmethod
    def from_legacy(cls, value: Any, alt: Optional[str] = None) -> Optional["ImageReference"]:
        """Resolve the legacy featured-image shapes into one reference.

        Accepted shapes are a bare URL string, ``{"url": ...}`` and
        ``{"original": {"url": ...}}``; the mapping shapes may also carry a
        ``public_id`` marking an image that was already migrated.  Anything
        else resolves to ``None``.
        """
        if isinstance(value, str):
            return cls(source_url=value, alt=alt) if value.strip() else None
        if not isinstance(value, dict):
            return None
        node = value
        if not node.get("url") and isinstance(node.get("original"), dict):
            node = node["original"]
        url = node.get("url")
        if not isinstance(url, str) or not url.strip():
            return None
        return cls(
            source_url=url,
            destination_id=node.get("public_id") or node.get("image_id") or None,
            alt=value.get("alt") or node.get("alt") or alt,
        )


class TermRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    legacy_id: int
    name: str
    slug: str


class LegacyTerm(BaseModel):
    """A category or tag: a Term row joined with its Term-Taxonomy row."""

    model_config = ConfigDict(frozen=True)

    legacy_id: int
    taxonomy_id: int
    taxonomy: str
    name: str
    slug: str
    description: str = ""
    count: int = 0
    parent: int = 0

    @property
    def is_category(self) -> bool:
        return self.taxonomy == "category"

    @property
    def is_tag(self) -> bool:
        return self.taxonomy == "post_tag"

    def ref(self) -> TermRef:
        return TermRef(legacy_id=self.legacy_id, name=self.name, slug=self.slug)


class LegacyUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    legacy_id: int
    name: str
    email: str = ""
    username: str = ""
    website: str = ""
    registered_at: Optional[datetime] = None


class LegacyPost(BaseModel):
    """A post or page ready to be migrated."""

    model_config = ConfigDict(frozen=True)

    legacy_id: int
    title: str = ""
    slug: str = ""
    content: str = ""
    excerpt: str = ""
    status: str = "draft"
    legacy_status: Optional[str] = None
    post_type: str = "post"
    author_id: Optional[int] = None
    author_name: str = "Unknown Author"
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    guid: Optional[str] = None
    permalink: Optional[str] = None
    categories: Tuple[TermRef, ...] = ()
    tags: Tuple[TermRef, ...] = ()
    featured_image: Optional[ImageReference] = None
    source: str = "wordpress_sql"

    @property
    def document_id(self) -> str:
        return f"wp_{self.legacy_id}"

    def subject(self) -> dict:
        """Fields used by the structured event log."""
        return {"legacy_id": self.legacy_id, "slug": self.slug, "title": self.title}
