import json
import logging
import os
from typing import List, Optional

from blog_migrator.mappers.record_mapper import post_from_export
from blog_migrator.models.records import LegacyPost
from blog_migrator.utils.errors import Diagnostics

logger = logging.getLogger(__name__)


def load_export(file_path: str, diagnostics: Optional[Diagnostics] = None) -> List[LegacyPost]:
    """Load posts from a ``posts.json`` export produced by the REST fetcher.

    The export is either a JSON list of posts or an object with a ``posts``
    list.  Entries that cannot be projected are dropped and counted on
    ``diagnostics``.

    Raises:
        FileNotFoundError: If the export file does not exist.
        ValueError: If the file is not valid JSON or has no post list.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"JSON export not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON export {file_path}: {e}") from e

    items = payload.get("posts") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise ValueError(f"JSON export {file_path} has no list of posts")

    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    posts: List[LegacyPost] = []
    for item in items:
        if not isinstance(item, dict):
            diagnostics.record("invalid_record", f"non-object entry: {type(item).__name__}")
            continue
        post = post_from_export(item, diagnostics)
        if post is not None:
            posts.append(post)
    logger.info("Loaded %d posts from %s", len(posts), file_path)
    return posts
