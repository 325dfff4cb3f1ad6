import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from datetime import datetime, timezone

import pytest

from blog_migrator.extractors.sql_dump import DumpTables, TableData
from blog_migrator.mappers.record_mapper import RecordMapper, map_row, normalize_status, parse_date
from blog_migrator.utils.errors import Diagnostics

POST_COLUMNS = (
    "ID", "post_author", "post_date", "post_date_gmt", "post_content", "post_title",
    "post_excerpt", "post_status", "post_name", "post_modified", "post_modified_gmt",
    "guid", "post_type",
)
ZERO = "0000-00-00 00:00:00"


def _table(name, columns, rows):
    return TableData(
        name=f"wp_{name}",
        columns=tuple(columns),
        rows=[[None if v is None else str(v) for v in row] for row in rows],
    )


def _tables():
    posts = [
        (1, 1, "2023-01-02 10:00:00", "2023-01-02 09:00:00", "<p>Hi</p>", "Hello World", "", "publish",
         "hello-world", "2023-01-03 10:00:00", ZERO, "http://old.example.com/?p=1", "post"),
        (2, 1, "2023-01-02 10:00:00", ZERO, "", "Trashed", "", "trash", "trashed", ZERO, ZERO, "", "post"),
        (3, 2, "not a date", ZERO, "<p>About</p>", "About", "", "pending", "about",
         "2023-02-01 08:00:00", ZERO, "http://old.example.com/?page_id=3", "page"),
        (4, 1, "2023-01-02 10:00:00", ZERO, "", "Hello World", "", "inherit", "1-revision-v1", ZERO, ZERO, "", "revision"),
        (5, 1, "2023-01-02 10:00:00", ZERO, "", "cover", "", "inherit", "cover", ZERO, ZERO,
         "https://old.example.com/wp-content/uploads/cover.jpg", "attachment"),
        (6, 9, "2023-03-01 12:00:00", ZERO, "", "Draft", "", "auto-draft", "", ZERO, ZERO, "", "post"),
    ]
    users = [
        (1, "admin", "admin", "a@example.com", "", "2020-01-01 00:00:00", "Ada"),
        (2, "bob", "bob", "b@example.com", "", ZERO, ""),
    ]
    terms = [(10, "News &amp; Views", "news", 0), (11, "python", "python", 0)]
    taxonomy = [(100, 10, "category", "", 0, 1), (101, 11, "post_tag", "", 0, 1), (102, 99, "category", "", 0, 0)]
    relationships = [(1, 100, 0), (1, 101, 0), (1, 555, 0), (3, 100, 0)]
    postmeta = [(1, 1, "_thumbnail_id", "5"), (2, 5, "_wp_attachment_image_alt", "Cover")]
    return DumpTables(
        prefix="wp_",
        tables={
            "posts": _table("posts", POST_COLUMNS, posts),
            "users": _table(
                "users",
                ("ID", "user_login", "user_nicename", "user_email", "user_url", "user_registered", "display_name"),
                users,
            ),
            "terms": _table("terms", ("term_id", "name", "slug", "term_group"), terms),
            "term_taxonomy": _table(
                "term_taxonomy", ("term_taxonomy_id", "term_id", "taxonomy", "description", "parent", "count"), taxonomy
            ),
            "term_relationships": _table(
                "term_relationships", ("object_id", "term_taxonomy_id", "term_order"), relationships
            ),
            "postmeta": _table("postmeta", ("meta_id", "post_id", "meta_key", "meta_value"), postmeta),
        },
    )


@pytest.mark.parametrize(
    "legacy, expected",
    [
        ("publish", "published"),
        ("future", "scheduled"),
        ("draft", "draft"),
        ("private", "draft"),
        ("pending", "draft"),
        ("PUBLISH", "published"),
        ("trash", None),
    ],
)
def test_normalize_status(legacy, expected):
    assert normalize_status(legacy) == expected


def test_unknown_status_becomes_draft_and_is_counted():
    diagnostics = Diagnostics()
    assert normalize_status("auto-draft", diagnostics) == "draft"
    assert diagnostics.count("unknown_status") == 1


def test_parse_date_variants():
    utc = timezone.utc
    assert parse_date("2024-03-05 14:30:00") == datetime(2024, 3, 5, 14, 30, tzinfo=utc)
    assert parse_date("2024-03-05T14:30:00Z") == datetime(2024, 3, 5, 14, 30, tzinfo=utc)
    assert parse_date("2024-03-05T14:30:00+02:00") == datetime(2024, 3, 5, 12, 30, tzinfo=utc)
    assert parse_date("2024-03-05") == datetime(2024, 3, 5, tzinfo=utc)
    assert parse_date(None) is None


def test_zero_date_is_null_without_warning():
    diagnostics = Diagnostics()
    assert parse_date(ZERO, diagnostics) is None
    assert not diagnostics


def test_invalid_date_is_null_and_counted():
    diagnostics = Diagnostics()
    assert parse_date("yesterday-ish", diagnostics, "post_date") is None
    assert diagnostics.count("invalid_date") == 1


def test_map_row_pads_short_rows():
    diagnostics = Diagnostics()
    assert map_row(("a", "b", "c"), ["1"], diagnostics) == {"a": "1", "b": None, "c": None}
    assert diagnostics.count("row_width_mismatch") == 1
    assert map_row(("a",), ["1"], diagnostics) == {"a": "1"}
    assert diagnostics.count("row_width_mismatch") == 1


def test_terms_inner_join_skips_orphans():
    diagnostics = Diagnostics()
    terms = RecordMapper(_tables(), diagnostics).terms()
    assert [(t.legacy_id, t.taxonomy_id, t.taxonomy) for t in terms] == [(10, 100, "category"), (11, 101, "post_tag")]
    assert terms[0].name == "News & Views"
    assert diagnostics.count("orphan_taxonomy") == 1


def test_users_name_fallbacks():
    users = RecordMapper(_tables()).users()
    assert [(u.legacy_id, u.name) for u in users] == [(1, "Ada"), (2, "bob")]
    assert users[0].registered_at == datetime(2020, 1, 1, tzinfo=timezone.utc)
    assert users[1].registered_at is None


def test_posts_keep_only_posts_and_pages_and_drop_trash():
    diagnostics = Diagnostics()
    posts = RecordMapper(_tables(), diagnostics).posts()
    assert [p.legacy_id for p in posts] == [1, 3, 6]
    assert [p.status for p in posts] == ["published", "draft", "draft"]
    assert posts[1].post_type == "page"
    assert diagnostics.count("excluded_trash") == 1
    assert diagnostics.count("unknown_status") == 1


def test_post_fields_are_joined():
    diagnostics = Diagnostics()
    post = RecordMapper(_tables(), diagnostics).posts()[0]
    assert post.document_id == "wp_1"
    assert post.title == "Hello World"
    assert post.slug == "hello-world"
    assert post.author_name == "Ada"
    assert [c.name for c in post.categories] == ["News & Views"]
    assert [t.name for t in post.tags] == ["python"]
    assert post.published_at == datetime(2023, 1, 2, 9, 0, tzinfo=timezone.utc)
    assert post.updated_at == datetime(2023, 1, 3, 10, 0, tzinfo=timezone.utc)
    assert post.permalink == "http://old.example.com/?p=1"
    assert post.featured_image.source_url == "https://old.example.com/wp-content/uploads/cover.jpg"
    assert post.featured_image.alt == "Cover"
    assert not post.featured_image.is_migrated
    assert diagnostics.count("orphan_relationship") == 1


def test_post_fallbacks():
    diagnostics = Diagnostics()
    posts = RecordMapper(_tables(), diagnostics).posts()
    page, draft = posts[1], posts[2]
    assert page.published_at is None
    assert page.author_name == "bob"
    assert page.featured_image is None
    assert draft.author_name == "Author 9"
    assert diagnostics.count("invalid_date") == 1


def test_permalink_from_old_domain():
    post = RecordMapper(_tables(), old_domain="https://old.example.com/").posts()[0]
    assert post.permalink == "https://old.example.com/hello-world/"


def test_diagnostics_are_not_counted_twice():
    diagnostics = Diagnostics()
    mapper = RecordMapper(_tables(), diagnostics)
    mapper.users()
    mapper.terms()
    mapper.posts()
    assert diagnostics.count("orphan_taxonomy") == 1
