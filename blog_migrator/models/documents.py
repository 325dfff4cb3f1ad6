from __future__ import annotations

import re
from datetime import datetime
from html import unescape
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from blog_migrator.utils.slugs import slugify


def _plain_text(html: Optional[str]) -> str:
    text = re.sub(r"<[^>]*>", "", html or "")
    return re.sub(r"\s+", " ", unescape(text)).strip()


class AuthorRef(BaseModel):
    uid: str
    name: str


class FeaturedImage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str
    public_id: Optional[str] = None
    image_id: Optional[str] = None
    alt: Optional[str] = None


class DocumentMeta(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    imported_from: str = Field("wordpress_sql", alias="importedFrom")
    imported_at: datetime = Field(..., alias="importedAt")
    wordpress_id: int = Field(..., alias="wordpressId")
    image_migrated_at: Optional[datetime] = Field(None, alias="imageMigratedAt")


class PostDocument(BaseModel):
    """A post as stored in the destination ``posts`` collection."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str = ""
    slug: str = Field(..., min_length=1)
    content: str = ""
    excerpt: str = ""
    status: str = "draft"
    post_type: str = Field("post", alias="type")
    author: AuthorRef
    featured_image: Optional[FeaturedImage] = Field(None, alias="featuredImage")
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    meta_title: Optional[str] = Field(None, alias="metaTitle")
    meta_description: Optional[str] = Field(None, alias="metaDescription")
    canonical: str = ""
    visibility: str = "public"
    view_count: int = Field(0, alias="viewCount")
    like_count: int = Field(0, alias="likeCount")
    meta: DocumentMeta

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v: Optional[str]):
        return v.strip() if isinstance(v, str) else v

    @field_validator("slug", mode="before")
    @classmethod
    def _ensure_slug(cls, v: Optional[str], info):  # type: ignore[override]
        if v is not None and v.strip():
            return v.strip()
        title = info.data.get("title")
        if isinstance(title, str) and title.strip():
            return slugify(title)
        return v

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _dedup_labels(cls, v: Optional[list[str]]):
        if not v:
            return []
        seen = set()
        deduped = []
        for item in v:
            if item and item not in seen:
                seen.add(item)
                deduped.append(item)
        return deduped

    def model_post_init(self, __context: Any) -> None:
        if self.meta_title is None:
            self.meta_title = self.title
        if self.meta_description is None:
            self.meta_description = _plain_text(self.excerpt)[:160]

    def to_document(self) -> dict[str, Any]:
        """Payload for the document store: camelCase keys, nulls kept."""
        return self.model_dump(by_alias=True)


class UserDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str = ""
    username: str = ""
    website: str = ""
    bio: str = ""
    role: str = "author"
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    meta: DocumentMeta

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TermDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    slug: str
    description: str = ""
    count: int = 0
    parent: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    meta: DocumentMeta

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
