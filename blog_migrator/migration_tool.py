"""
High-level orchestration of the legacy blog migration.

This module defines :class:`MigrationOrchestrator`, which ties the mapped
legacy records, the :class:`~blog_migrator.migrators.media_migrator.MediaMigrator`
and the destination document store into a complete, re-runnable pipeline.
Users and taxonomy terms are written first, then posts and pages one at a
time, each moving through its own :class:`~blog_migrator.models.state.MigrationState`::

    Pending -> Downloading -> Uploading -> Rewriting -> Persisted
         \\-> Skipped          (any non-terminal state) -> Failed

A record's failure is recorded on its state and in the structured event log
(:mod:`blog_migrator.utils.errors`); the run always continues with the next
record.  Documents are keyed by the legacy id (``wp_<id>``) and written
create-only, so a rerun never produces duplicates; a record whose document
already exists is skipped before any image is touched, unless ``force`` is set.

:meth:`MigrationOrchestrator.migrate_stored_images` is a second entry point:
it walks posts that are already in the store and moves their remaining
legacy images to the asset service, patching only the image fields.

The clients are injected: the orchestrator never builds a store or an asset
service itself, which is what lets the tests drive it with in-memory fakes.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from blog_migrator.migrators.asset_service import MediaUploadError
from blog_migrator.migrators.document_store import DocumentStore, DocumentStoreError
from blog_migrator.migrators.legacy_source import MediaDownloadError
from blog_migrator.migrators.media_migrator import DownloadedAsset, MediaMigrator, MediaOutcome, MediaResult, RecordContext
from blog_migrator.models.documents import AuthorRef, DocumentMeta, FeaturedImage, PostDocument, TermDocument, UserDocument
from blog_migrator.models.records import ImageReference, LegacyPost, LegacyTerm, LegacyUser
from blog_migrator.models.state import MigrationState, MigrationStatus
from blog_migrator.utils.errors import Diagnostics, report_error, report_ok
from blog_migrator.utils.redirects import DRY_RUN_REDIRECT_MAP, REDIRECT_MAP, Redirect, redirect_for, write_redirect_map
from blog_migrator.utils.slugs import resolve_unique_slug, slugify

logger = logging.getLogger(__name__)

REPORT_FILE = os.path.join("reports", "migration", "report.json")


def _media_code(result: MediaResult) -> str:
    return "MEDIA_UPLOAD" if (result.reason or "").startswith("upload") else "MEDIA_DOWNLOAD"


@dataclass
class MigrationOptions:
    """Run policy.  Built from the ``migration`` config section plus CLI flags."""

    dry_run: bool = False
    limit: Optional[int] = None
    force: bool = False
    featured_only: bool = False
    content_only: bool = False
    record_delay: float = 0.5
    max_reported_failures: int = 10
    new_site_url: str = ""
    posts_collection: str = "posts"
    users_collection: str = "users"
    categories_collection: str = "categories"
    tags_collection: str = "tags"

    def __post_init__(self) -> None:
        if self.featured_only and self.content_only:
            raise ValueError("featured_only and content_only are mutually exclusive")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be zero or positive")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MigrationOptions":
        migration = config.get("migration", {})
        destination = config.get("destination", {})
        return cls(
            dry_run=bool(migration.get("dry_run", False)),
            limit=migration.get("limit"),
            force=bool(migration.get("force", False)),
            featured_only=bool(migration.get("featured_only", False)),
            content_only=bool(migration.get("content_only", False)),
            record_delay=float(migration.get("record_delay", 0.5)),
            max_reported_failures=int(migration.get("max_reported_failures", 10)),
            new_site_url=migration.get("new_site_url", "") or "",
            posts_collection=destination.get("posts_collection", "posts"),
            users_collection=destination.get("users_collection", "users"),
            categories_collection=destination.get("categories_collection", "categories"),
            tags_collection=destination.get("tags_collection", "tags"),
        )

    @property
    def include_featured(self) -> bool:
        return not self.content_only

    @property
    def include_content(self) -> bool:
        return not self.featured_only


@dataclass
class LegacyContent:
    """Everything mapped from one legacy source, in processing order."""

    users: List[LegacyUser] = field(default_factory=list)
    terms: List[LegacyTerm] = field(default_factory=list)
    posts: List[LegacyPost] = field(default_factory=list)


@dataclass
class MigrationReport:
    """Aggregate outcome of one run: the only output besides the store writes."""

    states: List[MigrationState] = field(default_factory=list)
    dry_run: bool = False
    media: Dict[str, int] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    max_failures: int = 10
    redirect_map: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @staticmethod
    def _count(states: Iterable[MigrationState]) -> Dict[str, int]:
        states = list(states)
        return {
            "total": len(states),
            "migrated": sum(1 for s in states if s.status is MigrationStatus.PERSISTED),
            "skipped": sum(1 for s in states if s.status is MigrationStatus.SKIPPED),
            "failed": sum(1 for s in states if s.status is MigrationStatus.FAILED),
        }

    def counts(self) -> Dict[str, int]:
        return self._count(self.states)

    @property
    def total(self) -> int:
        return len(self.states)

    @property
    def migrated(self) -> int:
        return self.counts()["migrated"]

    @property
    def skipped(self) -> int:
        return self.counts()["skipped"]

    @property
    def failed(self) -> int:
        return self.counts()["failed"]

    def by_kind(self) -> Dict[str, Dict[str, int]]:
        kinds: Dict[str, List[MigrationState]] = {}
        for state in self.states:
            kinds.setdefault(state.kind, []).append(state)
        return {kind: self._count(states) for kind, states in kinds.items()}

    def failures(self) -> List[Dict[str, Optional[str]]]:
        """The first ``max_failures`` failed records with their reasons."""
        failed = [s for s in self.states if s.status is MigrationStatus.FAILED]
        return [
            {"legacy_id": s.source_id, "kind": s.kind, "reason": s.last_error}
            for s in failed[: self.max_failures]
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.counts(),
            "dry_run": self.dry_run,
            "by_kind": self.by_kind(),
            "media": dict(self.media),
            "diagnostics": dict(self.diagnostics),
            "failures": self.failures(),
            "redirect_map": self.redirect_map,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def summary(self) -> str:
        counts = self.counts()
        lines = [
            "=" * 60,
            "Migration summary" + (" (DRY RUN, nothing was written)" if self.dry_run else ""),
            "=" * 60,
            "Total: {total} | Migrated: {migrated} | Skipped: {skipped} | Failed: {failed}".format(**counts),
        ]
        for kind, kc in sorted(self.by_kind().items()):
            lines.append(
                f"  {kind}: {kc['total']} total, {kc['migrated']} migrated, "
                f"{kc['skipped']} skipped, {kc['failed']} failed"
            )
        if self.media:
            lines.append("Media: " + ", ".join(f"{k}={v}" for k, v in self.media.items()))
        if self.diagnostics:
            lines.append("Diagnostics:")
            for code, info in self.diagnostics.items():
                lines.append(f"  {code}: {info['count']} ({info['message']})")
        failures = self.failures()
        if failures:
            total_failed = counts["failed"]
            lines.append(f"First {len(failures)} of {total_failed} failures:")
            for entry in failures:
                lines.append(f"  - {entry['kind']} {entry['legacy_id']}: {entry['reason']}")
        if self.redirect_map:
            lines.append(f"Redirect map: {self.redirect_map}")
        return "\n".join(lines)

    def save(self, path: str = REPORT_FILE) -> str:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2, default=str)
        return path


class MigrationOrchestrator:
    """
    Drives every legacy record through the migration state machine.

    :param store: Destination document store.
    :param media: Media migrator configured for this run (its dedup cache
        lives exactly as long as the orchestrator uses it).
    :param options: Run policy.
    :param diagnostics: Counters shared with the tokenizer and mapper, so
        their fallbacks show up in the final report.
    :param sleep: Blocking delay between posts; injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        media: MediaMigrator,
        options: Optional[MigrationOptions] = None,
        *,
        diagnostics: Optional[Diagnostics] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.media = media
        self.options = options or MigrationOptions()
        self.diagnostics = diagnostics if diagnostics is not None else media.diagnostics
        self.sleep = sleep
        self.now = now
        self._claimed_slugs: Set[str] = set()
        self._redirects: List[Redirect] = []

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, records: Union[LegacyContent, Iterable[LegacyPost]]) -> MigrationReport:
        content = records if isinstance(records, LegacyContent) else LegacyContent(posts=list(records))
        report = MigrationReport(dry_run=self.options.dry_run, max_failures=self.options.max_reported_failures)
        if self.options.dry_run:
            logger.info("Dry run: no documents will be written and no images uploaded")

        for user in content.users:
            report.states.append(self.migrate_user(user))
        for term in content.terms:
            if term.is_category or term.is_tag:
                report.states.append(self.migrate_term(term))

        posts = content.posts
        if self.options.limit is not None:
            posts = posts[: self.options.limit]
        logger.info("Migrating %d of %d posts", len(posts), len(content.posts))
        for index, post in enumerate(posts):
            if index and self.options.record_delay > 0:
                self.sleep(self.options.record_delay)
            logger.info("[%d/%d] %s (%s)", index + 1, len(posts), post.title or post.slug, post.legacy_id)
            report.states.append(self.migrate_post(post))

        if self._redirects:
            out_path = DRY_RUN_REDIRECT_MAP if self.options.dry_run else REDIRECT_MAP
            report.redirect_map = write_redirect_map(self._redirects, out_path)
            logger.info("Redirect CSV generated with %d entries", len(self._redirects))
        return self._finish(report)

    def _finish(self, report: MigrationReport) -> MigrationReport:
        report.media = self.media.counters.to_dict()
        report.diagnostics = self.diagnostics.to_dict()
        report.finished_at = self.now()
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _meta(self, legacy_id: int, source: str = "wordpress_sql", **extra: Any) -> DocumentMeta:
        return DocumentMeta(importedFrom=source, importedAt=self.now(), wordpressId=legacy_id, **extra)

    def _fail(
        self,
        state: MigrationState,
        subject: Mapping[str, Any],
        code: str,
        reason: str,
        exc: Optional[BaseException] = None,
    ) -> MigrationState:
        state.fail(reason)
        report_error(code, subject, exc)
        logger.error("%s %s failed: %s", state.kind, state.source_id, reason)
        return state

    def _walk_to_rewriting(self, state: MigrationState) -> None:
        # Users and terms carry no media; they pass the media states empty.
        state.advance(MigrationStatus.DOWNLOADING)
        state.advance(MigrationStatus.UPLOADING)
        state.advance(MigrationStatus.REWRITING)

    def _write_once(
        self,
        state: MigrationState,
        subject: Mapping[str, Any],
        collection: str,
        document: Dict[str, Any],
    ) -> MigrationState:
        """Write a user or term document unless one already exists."""
        doc_id = state.destination_id or ""
        try:
            if self.store.get(collection, doc_id) is not None and not self.options.force:
                state.skip("already exists")
                logger.debug("%s/%s already exists", collection, doc_id)
                return state
            self._walk_to_rewriting(state)
            if self.options.dry_run:
                logger.info("[DRY RUN] Would write %s/%s", collection, doc_id)
            else:
                self.store.create(collection, doc_id, document, overwrite=self.options.force)
        except DocumentStoreError as e:
            return self._fail(state, subject, "STORE_WRITE", f"{collection}/{doc_id}: {e}", e)
        state.advance(MigrationStatus.PERSISTED)
        return state

    # ------------------------------------------------------------------
    # Users and terms
    # ------------------------------------------------------------------

    def migrate_user(self, user: LegacyUser) -> MigrationState:
        state = MigrationState(source_id=str(user.legacy_id), kind="user", destination_id=f"wp_{user.legacy_id}")
        subject = {"legacy_id": user.legacy_id, "slug": user.username, "title": user.name}
        document = UserDocument(
            name=user.name,
            email=user.email,
            username=user.username,
            website=user.website,
            createdAt=user.registered_at,
            updatedAt=user.registered_at,
            meta=self._meta(user.legacy_id),
        ).to_document()
        return self._write_once(state, subject, self.options.users_collection, document)

    def migrate_term(self, term: LegacyTerm) -> MigrationState:
        kind = "category" if term.is_category else "tag"
        collection = self.options.categories_collection if term.is_category else self.options.tags_collection
        state = MigrationState(source_id=str(term.legacy_id), kind=kind, destination_id=f"wp_{term.legacy_id}")
        subject = {"legacy_id": term.legacy_id, "slug": term.slug, "title": term.name}
        document = TermDocument(
            name=term.name,
            slug=term.slug or slugify(term.name),
            description=term.description,
            count=term.count,
            parent=f"wp_{term.parent}" if term.parent else None,
            createdAt=self.now(),
            updatedAt=self.now(),
            meta=self._meta(term.legacy_id),
        ).to_document()
        return self._write_once(state, subject, collection, document)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def resolve_slug(self, post: LegacyPost) -> str:
        """First free slug for ``post``, probing the live store for each candidate.

        A slug held by the post's own document (a forced rerun) counts as free.
        """
        base = slugify(post.title) or slugify(post.slug) or f"post-{post.legacy_id}"

        def is_taken(candidate: str) -> bool:
            if candidate in self._claimed_slugs:
                return True
            owner = self.store.find_by_slug(self.options.posts_collection, candidate)
            return owner is not None and owner != post.document_id

        return resolve_unique_slug(base, is_taken)

    def _featured_document(
        self, reference: Optional[ImageReference], results: Mapping[str, MediaResult]
    ) -> Optional[FeaturedImage]:
        if reference is None:
            return None
        result = results.get(reference.source_url)
        identifier = result.destination_id if result is not None and result.resolved else reference.destination_id
        if not identifier:
            return FeaturedImage(url=reference.source_url, alt=reference.alt)
        return FeaturedImage(
            url=self.media.assets.build_url(identifier),
            public_id=identifier,
            image_id=identifier,
            alt=reference.alt,
        )

    def _build_post_document(
        self,
        post: LegacyPost,
        slug: str,
        content: str,
        featured: Optional[FeaturedImage],
        images_migrated: bool,
    ) -> PostDocument:
        extra = {"imageMigratedAt": self.now()} if images_migrated else {}
        return PostDocument(
            title=post.title,
            slug=slug,
            content=content,
            excerpt=post.excerpt,
            status=post.status,
            type=post.post_type,
            author=AuthorRef(
                uid=f"wp_{post.author_id}" if post.author_id is not None else "",
                name=post.author_name,
            ),
            featuredImage=featured,
            categories=[c.name for c in post.categories],
            tags=[t.name for t in post.tags],
            publishedAt=post.published_at,
            createdAt=post.created_at,
            updatedAt=post.updated_at,
            canonical=post.permalink or "",
            meta=self._meta(post.legacy_id, post.source, **extra),
        )

    def migrate_post(self, post: LegacyPost) -> MigrationState:
        """Run one post through the state machine and return its final state."""
        opts = self.options
        state = MigrationState(source_id=str(post.legacy_id), kind=post.post_type, destination_id=post.document_id)
        subject = post.subject()
        context = RecordContext(post.legacy_id, post.slug)

        if not opts.force:
            try:
                existing = self.store.get(opts.posts_collection, post.document_id)
            except DocumentStoreError as e:
                return self._fail(state, subject, "STORE_READ", f"existence check: {e}", e)
            if existing is not None:
                state.skip("already migrated")
                report_ok("SKIPPED_EXISTING", subject)
                return state

        # Downloading
        state.advance(MigrationStatus.DOWNLOADING)
        results: Dict[str, MediaResult] = {}
        featured = post.featured_image if opts.include_featured else None
        sources: List[str] = []
        if featured is not None:
            if featured.is_migrated and not opts.force:
                results[featured.source_url] = self.media.migrate_image(featured, context)
            else:
                sources.append(featured.source_url)
        content_urls = self.media.content_sources(post.content) if opts.include_content else []
        sources.extend(url for url in content_urls if url not in sources)

        assets: List[DownloadedAsset] = []
        for url in sources:
            early = self.media.precheck(url)
            if early is not None and not early.ok:
                reason = f"{url}: {early.reason} (failed earlier in this run)"
                return self._fail(state, subject, _media_code(early), reason)
            if early is not None:
                results[url] = early
                continue
            try:
                assets.append(self.media.download(url, context))
            except MediaDownloadError as e:
                return self._fail(state, subject, "MEDIA_DOWNLOAD", f"download {url}: {e.reason}", e)

        # Uploading
        state.advance(MigrationStatus.UPLOADING)
        for asset in assets:
            try:
                identifier = self.media.upload(asset, context)
            except MediaUploadError as e:
                return self._fail(state, subject, "MEDIA_UPLOAD", f"upload {asset.source_url}: {e}", e)
            results[asset.source_url] = MediaResult(asset.source_url, MediaOutcome.MIGRATED, identifier)

        # Rewriting
        state.advance(MigrationStatus.REWRITING)
        html, replaced = self.media.apply_cached(post.content, content_urls)
        try:
            slug = self.resolve_slug(post)
            document = self._build_post_document(
                post, slug, html, self._featured_document(featured or post.featured_image, results), bool(assets)
            )
        except DocumentStoreError as e:
            return self._fail(state, subject, "SLUG_RESOLUTION", f"slug lookup: {e}", e)
        except ValidationError as e:
            return self._fail(state, subject, "invalid_record", f"invalid document: {e.errors()[0]['msg']}", e)

        if opts.dry_run:
            logger.info(
                "[DRY RUN] Would write %s/%s as '%s' (%d images rewritten)",
                opts.posts_collection, post.document_id, slug, replaced,
            )
        else:
            try:
                self.store.create(opts.posts_collection, post.document_id, document.to_document(), overwrite=opts.force)
            except DocumentStoreError as e:
                return self._fail(state, subject, "STORE_WRITE", f"write: {e}", e)

        self._claimed_slugs.add(slug)
        state.advance(MigrationStatus.PERSISTED)
        redirect = redirect_for(post, slug, opts.new_site_url)
        if redirect is not None:
            self._redirects.append(redirect)
        report_ok("PERSISTED", {**subject, "slug": slug}, {"document_id": post.document_id, "dry_run": opts.dry_run})
        return state

    # ------------------------------------------------------------------
    # Posts already in the store
    # ------------------------------------------------------------------

    def migrate_stored_images(self) -> MigrationReport:
        """Migrate the images of posts already in the destination store, in place.

        Documents are read page by page from the posts collection; ``limit``,
        ``featured_only``, ``content_only``, ``force`` and ``dry_run`` apply
        as in :meth:`run`.  Raises :class:`DocumentStoreError` if the
        collection cannot be listed.
        """
        opts = self.options
        report = MigrationReport(dry_run=opts.dry_run, max_failures=opts.max_reported_failures)
        if opts.dry_run:
            logger.info("Dry run: no documents will be patched and no images uploaded")

        for index, (doc_id, fields) in enumerate(self.store.iter_documents(opts.posts_collection)):
            if opts.limit is not None and index >= opts.limit:
                break
            if index and opts.record_delay > 0:
                self.sleep(opts.record_delay)
            logger.info("[%d] %s (%s)", index + 1, fields.get("title") or fields.get("slug") or doc_id, doc_id)
            report.states.append(self.migrate_stored_post(doc_id, fields))
        return self._finish(report)

    def _pending_featured(self, fields: Mapping[str, Any]) -> Optional[ImageReference]:
        if not self.options.include_featured:
            return None
        reference = ImageReference.from_legacy(fields.get("featuredImage"))
        if reference is None or self.media.assets.is_destination_url(reference.source_url):
            return None
        if self.media.is_unreachable(reference.source_url):
            return None
        if reference.is_migrated and not self.options.force:
            return None
        return reference

    def _featured_updates(self, value: Any, identifier: str) -> Dict[str, Any]:
        """Field paths recording ``identifier`` on a stored featured image, whatever its shape."""
        if isinstance(value, dict):
            node = "featuredImage"
            if not value.get("url") and isinstance(value.get("original"), dict):
                node = "featuredImage.original"
            return {f"{node}.public_id": identifier, f"{node}.image_id": identifier}
        # bare URL string
        return {
            "featuredImage": FeaturedImage(
                url=self.media.assets.build_url(identifier), public_id=identifier, image_id=identifier
            ).model_dump()
        }

    def migrate_stored_post(self, doc_id: str, fields: Mapping[str, Any]) -> MigrationState:
        """Migrate the legacy images of one stored post and patch the document.

        Only ``featuredImage``, ``content``, ``updatedAt`` and
        ``meta.imageMigratedAt`` are written.  As in :meth:`migrate_post`, a
        failed image fails the record and nothing is patched.
        """
        opts = self.options
        meta = fields.get("meta") or {}
        legacy_id = meta.get("wordpressId", doc_id)
        slug = fields.get("slug") or ""
        state = MigrationState(source_id=str(legacy_id), kind=fields.get("type") or "post", destination_id=doc_id)
        subject = {"legacy_id": legacy_id, "slug": slug, "title": fields.get("title")}
        context = RecordContext(legacy_id, slug)

        featured = self._pending_featured(fields)
        html = fields.get("content") or ""
        content_urls: List[str] = []
        if opts.include_content:
            content_urls = [u for u in self.media.content_sources(html) if not self.media.is_unreachable(u)]
        if featured is None and not content_urls:
            state.skip("no legacy images")
            return state

        # Downloading and uploading
        state.advance(MigrationStatus.DOWNLOADING)
        featured_result = self.media.migrate_image(featured, context, force=opts.force) if featured else None
        rewrite = self.media.rewrite_html(html, context) if content_urls else None
        state.advance(MigrationStatus.UPLOADING)
        failures = list(rewrite.failures) if rewrite is not None else []
        if featured_result is not None and not featured_result.ok:
            failures.insert(0, featured_result)
        if failures:
            first = failures[0]
            return self._fail(state, subject, _media_code(first), f"{first.source_url}: {first.reason}")

        # Rewriting
        state.advance(MigrationStatus.REWRITING)
        updates: Dict[str, Any] = {}
        if featured_result is not None and featured_result.resolved:
            updates.update(self._featured_updates(fields.get("featuredImage"), featured_result.destination_id or ""))
        if rewrite is not None and rewrite.replaced:
            updates["content"] = rewrite.html
        if updates:
            updates["updatedAt"] = self.now()
            updates["meta.imageMigratedAt"] = self.now()
            if opts.dry_run:
                logger.info("[DRY RUN] Would patch %s/%s: %s", opts.posts_collection, doc_id, ", ".join(sorted(updates)))
            else:
                try:
                    self.store.update(opts.posts_collection, doc_id, updates)
                except DocumentStoreError as e:
                    return self._fail(state, subject, "STORE_WRITE", f"update: {e}", e)

        state.advance(MigrationStatus.PERSISTED)
        report_ok("IMAGES_MIGRATED", subject, {"document_id": doc_id, "fields": sorted(updates), "dry_run": opts.dry_run})
        return state
