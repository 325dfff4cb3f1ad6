import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from pydantic import ValidationError

from blog_migrator.models.records import ImageReference


def test_bare_url():
    ref = ImageReference.from_legacy("  https://old.example.com/a.png ")
    assert ref.source_url == "https://old.example.com/a.png"
    assert not ref.is_migrated


def test_url_object_with_public_id_is_migrated():
    ref = ImageReference.from_legacy({"url": "https://old.example.com/a.png", "public_id": "blog/posts/a"})
    assert ref.destination_id == "blog/posts/a"
    assert ref.is_migrated


def test_nested_original_object():
    ref = ImageReference.from_legacy({"original": {"url": "https://fs.example.com/x.webp", "alt": "X"}})
    assert ref.source_url == "https://fs.example.com/x.webp"
    assert ref.alt == "X"
    assert ref.destination_id is None


@pytest.mark.parametrize("value", [None, "", "   ", 42, {}, {"url": ""}, {"original": {}}, {"original": "x"}])
def test_unusable_shapes_resolve_to_none(value):
    assert ImageReference.from_legacy(value) is None


def test_with_destination_returns_new_reference():
    ref = ImageReference.from_legacy("https://old.example.com/a.png")
    migrated = ref.with_destination("blog/posts/a")
    assert migrated.destination_id == "blog/posts/a"
    assert ref.destination_id is None
    assert migrated.cache_key == ref.cache_key


def test_reference_is_frozen():
    ref = ImageReference(source_url="https://old.example.com/a.png")
    with pytest.raises(ValidationError):
        ref.destination_id = "x"
