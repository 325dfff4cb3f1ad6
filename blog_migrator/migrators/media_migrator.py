"""
Migration of legacy images to the destination asset service.

:class:`MediaMigrator` resolves image references to destination asset
identifiers.  For one source URL the steps are:

1. cache check: a URL already resolved during this run is answered from
   the in-memory dedup cache without any network I/O, and a URL that
   already failed is answered with the same failure (no retry within a run);
2. pass-through: a URL on the destination host is already migrated;
3. unreachable paths: a URL under a configured unreachable prefix is
   skipped with reason ``unreachable_source``;
4. download from the legacy host;
5. upload to the asset service, storing the identifier in the cache under
   the original source URL before it is returned.

Failures are returned as :class:`MediaResult` values rather than raised,
so one broken image never stops the run.  The orchestrator drives the
download and upload steps separately (:meth:`MediaMigrator.download`,
:meth:`MediaMigrator.upload`) to report per-record progress.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import unquote, urlparse

from blog_migrator.migrators.asset_service import AssetService, MediaUploadError
from blog_migrator.migrators.legacy_source import MediaDownloadError, extract_storage_path
from blog_migrator.models.records import ImageReference
from blog_migrator.parsers.html_images import extract_image_urls, rewrite_html_urls
from blog_migrator.utils.errors import Diagnostics
from blog_migrator.utils.slugs import slugify

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "posts"
DEFAULT_CONTENT_TRANSFORM: Dict[str, Any] = {"width": 800, "fetch_format": "auto", "quality": "auto"}

MIME_TYPES: Dict[str, str] = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".avif": "image/avif",
}


class ImageSource(Protocol):
    def fetch(self, url: str) -> bytes:
        ...


def _source_path(url: str) -> str:
    location = extract_storage_path(url)
    if location is not None:
        return location[1]
    return unquote(urlparse(url).path or "")


def guess_mime_type(url: str) -> str:
    """MIME type from the extension of the source path, ``image/jpeg`` if unknown."""
    ext = os.path.splitext(_source_path(url))[1].lower()
    return MIME_TYPES.get(ext, "image/jpeg")


def migrated_filename(url: str) -> str:
    """Stable destination filename for ``url``.

    The stem comes from the source filename; a short hash of the full URL
    keeps two different images called ``image.jpg`` apart while making a
    rerun target the same asset.
    """
    stem, ext = os.path.splitext(os.path.basename(_source_path(url)))
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    ext = ext.lower() if ext.lower() in MIME_TYPES else ".jpg"
    return f"{slugify(stem)[:60] or 'image'}-{digest}{ext}"


class MediaOutcome(str, Enum):
    MIGRATED = "migrated"
    CACHED = "cached"
    PASSED_THROUGH = "passed_through"
    ALREADY_MIGRATED = "already_migrated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RecordContext:
    """Which record an image belongs to, for logging and folder hints."""

    legacy_id: Any
    slug: str = ""
    folder: str = DEFAULT_FOLDER


@dataclass(frozen=True)
class MediaResult:
    """Outcome of resolving one source URL."""

    source_url: str
    outcome: MediaOutcome
    destination_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is not MediaOutcome.FAILED

    @property
    def resolved(self) -> bool:
        """True when the image now lives on the destination host."""
        return self.destination_id is not None and self.outcome not in (
            MediaOutcome.PASSED_THROUGH,
            MediaOutcome.SKIPPED,
        )

    @classmethod
    def failed(cls, source_url: str, reason: str) -> "MediaResult":
        return cls(source_url, MediaOutcome.FAILED, reason=reason)


@dataclass(frozen=True)
class DownloadedAsset:
    source_url: str
    data: bytes
    mime_type: str
    filename: str


@dataclass
class HtmlRewrite:
    html: str
    results: List[MediaResult] = field(default_factory=list)

    @property
    def failures(self) -> List[MediaResult]:
        return [r for r in self.results if not r.ok]

    @property
    def replaced(self) -> int:
        return sum(1 for r in self.results if r.resolved)


@dataclass
class MediaCounters:
    downloads: int = 0
    uploads: int = 0
    cache_hits: int = 0
    pass_through: int = 0
    already_migrated: int = 0
    known_failures: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class MediaMigrator:
    """Resolves image references and rewrites HTML bodies for one run."""

    def __init__(
        self,
        assets: AssetService,
        source: ImageSource,
        *,
        unreachable_prefixes: Iterable[str] = (),
        content_transform: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
        diagnostics: Optional[Diagnostics] = None,
    ) -> None:
        self.assets = assets
        self.source = source
        self.unreachable_prefixes = tuple(p for p in unreachable_prefixes if p)
        self.content_transform = dict(content_transform or DEFAULT_CONTENT_TRANSFORM)
        self.dry_run = dry_run
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.cache: Dict[str, str] = {}
        self.failed_urls: Dict[str, MediaResult] = {}
        self.counters = MediaCounters()

    def is_unreachable(self, url: str) -> bool:
        path = urlparse(url).path or ""
        return any(url.startswith(p) or path.startswith(p) for p in self.unreachable_prefixes)

    def _remember_failure(self, url: str, reason: str) -> None:
        self.counters.failed += 1
        self.failed_urls[url] = MediaResult.failed(url, reason)

    def precheck(self, url: str) -> Optional[MediaResult]:
        """Resolve ``url`` without network I/O when possible.

        Returns ``None`` when the image still has to be downloaded.
        """
        cached = self.cache.get(url)
        if cached is not None:
            self.counters.cache_hits += 1
            return MediaResult(url, MediaOutcome.CACHED, cached)
        known = self.failed_urls.get(url)
        if known is not None:
            self.counters.known_failures += 1
            return known
        if self.assets.is_destination_url(url):
            self.counters.pass_through += 1
            return MediaResult(url, MediaOutcome.PASSED_THROUGH, url)
        if self.is_unreachable(url):
            self.counters.skipped += 1
            self.diagnostics.record("unreachable_source", url)
            logger.info("Skipping unreachable legacy image %s", url)
            return MediaResult(url, MediaOutcome.SKIPPED, reason="unreachable_source")
        return None

    def download(self, url: str, context: RecordContext) -> DownloadedAsset:
        """Fetch ``url``.  Raises :class:`MediaDownloadError`."""
        try:
            data = self.source.fetch(url)
        except MediaDownloadError as e:
            self._remember_failure(url, f"download: {e.reason}")
            raise
        self.counters.downloads += 1
        logger.debug("Downloaded %s (%d bytes) for record %s", url, len(data), context.legacy_id)
        return DownloadedAsset(url, data, guess_mime_type(url), migrated_filename(url))

    def upload(self, asset: DownloadedAsset, context: RecordContext) -> str:
        """Upload ``asset`` and cache its identifier.  Raises :class:`MediaUploadError`."""
        if self.dry_run:
            identifier = f"dry-run/{context.folder}/{os.path.splitext(asset.filename)[0]}"
            logger.info("[DRY RUN] Would upload %s as %s", asset.source_url, identifier)
        else:
            try:
                identifier = self.assets.upload(asset.data, asset.mime_type, context.folder, asset.filename)
            except MediaUploadError as e:
                self._remember_failure(asset.source_url, f"upload: {e}")
                raise
            self.counters.uploads += 1
        self.cache[asset.source_url] = identifier
        return identifier

    def migrate_reference(self, source_url: str, context: RecordContext) -> MediaResult:
        """Resolve one source URL to a destination identifier."""
        early = self.precheck(source_url)
        if early is not None:
            return early
        try:
            asset = self.download(source_url, context)
            identifier = self.upload(asset, context)
        except (MediaDownloadError, MediaUploadError) as e:
            logger.warning("Image %s failed for record %s: %s", source_url, context.legacy_id, e)
            return self.failed_urls[source_url]
        return MediaResult(source_url, MediaOutcome.MIGRATED, identifier)

    def migrate_image(self, reference: ImageReference, context: RecordContext, *, force: bool = False) -> MediaResult:
        """Like :meth:`migrate_reference`, honouring an existing migration marker."""
        if reference.is_migrated and not force:
            self.counters.already_migrated += 1
            return MediaResult(reference.source_url, MediaOutcome.ALREADY_MIGRATED, reference.destination_id)
        return self.migrate_reference(reference.source_url, context)

    def content_sources(self, html: str) -> List[str]:
        """Unique ``<img>`` sources of ``html`` that are not on the destination host."""
        return extract_image_urls(html, self.assets.is_destination_url)

    def presentation_url(self, identifier: str) -> str:
        return self.assets.build_url(identifier, **self.content_transform)

    def apply_cached(self, html: str, urls: Optional[Iterable[str]] = None) -> Tuple[str, int]:
        """Rewrite ``html`` with the identifiers already in the cache.

        Returns the new HTML and how many distinct URLs were replaced.
        """
        sources = self.content_sources(html) if urls is None else list(urls)
        mapping = {url: self.presentation_url(self.cache[url]) for url in sources if url in self.cache}
        return rewrite_html_urls(html, mapping), len(mapping)

    def rewrite_html(self, html: str, context: RecordContext) -> HtmlRewrite:
        """Migrate every image of ``html`` once and point the markup at the new assets."""
        results = [self.migrate_reference(url, context) for url in self.content_sources(html)]
        mapping = {r.source_url: self.presentation_url(r.destination_id) for r in results if r.resolved}
        return HtmlRewrite(rewrite_html_urls(html, mapping), results)
