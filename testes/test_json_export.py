import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import json
from datetime import datetime, timezone

import pytest

from blog_migrator.extractors.json_export import load_export
from blog_migrator.utils.errors import Diagnostics

EXPORT = [
    {
        "id": 42,
        "title": "Hi there",
        "slug": "hi-there",
        "content": "<p>x</p>",
        "status": "published",
        "author": {"uid": "7", "name": "Ann"},
        "featuredImage": {"original": {"url": "https://fs.example.com/x.png"}},
        "categories": [{"id": 3, "name": "News", "slug": "news"}],
        "tags": ["tips &amp; tricks", ""],
        "publishedAt": "2023-05-01T10:00:00Z",
    },
    {"id": 43, "title": "Gone", "status": "trash"},
    {"title": "No id"},
    "oops",
]


def _write(tmp_path, payload):
    path = tmp_path / "posts.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_load_export(tmp_path):
    diagnostics = Diagnostics()
    posts = load_export(_write(tmp_path, EXPORT), diagnostics)
    assert len(posts) == 1
    post = posts[0]
    assert post.legacy_id == 42
    assert post.status == "published"
    assert post.author_id == 7
    assert post.author_name == "Ann"
    assert post.featured_image.source_url == "https://fs.example.com/x.png"
    assert [(c.legacy_id, c.name) for c in post.categories] == [(3, "News")]
    assert [t.name for t in post.tags] == ["tips & tricks"]
    assert post.published_at == datetime(2023, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert post.source == "wordpress_api"
    assert diagnostics.count("excluded_trash") == 1
    assert diagnostics.count("invalid_record") == 2


def test_export_wrapped_in_object(tmp_path):
    posts = load_export(_write(tmp_path, {"posts": EXPORT[:1]}))
    assert [p.legacy_id for p in posts] == [42]


def test_missing_export(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_export(str(tmp_path / "nope.json"))


def test_invalid_export(tmp_path):
    path = tmp_path / "posts.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_export(str(path))
    with pytest.raises(ValueError):
        load_export(_write(tmp_path, {"items": []}))
