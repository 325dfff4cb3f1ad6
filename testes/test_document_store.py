import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from blog_migrator.migrators.document_store import (
    DocumentExistsError,
    DocumentStoreError,
    FirestoreRestStore,
    decode_fields,
    encode_fields,
    encode_value,
    nest_field_paths,
)

ROOT = "https://firestore.googleapis.com/v1/projects/blog/databases/(default)/documents"


def _response(status_code, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = {}
    resp.json.return_value = payload if payload is not None else {}
    resp.text = ""
    return resp


def _store(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return FirestoreRestStore("blog", "token", session=session), session


def test_encode_value():
    assert encode_value(None) == {"nullValue": None}
    assert encode_value(True) == {"booleanValue": True}
    assert encode_value(3) == {"integerValue": "3"}
    assert encode_value(1.5) == {"doubleValue": 1.5}
    assert encode_value("x") == {"stringValue": "x"}
    assert encode_value(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == {"timestampValue": "2024-01-02T03:04:05Z"}
    assert encode_value({"tags": ["a"]}) == {
        "mapValue": {"fields": {"tags": {"arrayValue": {"values": [{"stringValue": "a"}]}}}}
    }


def test_fields_are_decoded_back():
    data = {
        "title": "Hello",
        "meta": {"wordpressId": 1, "importedAt": datetime(2024, 1, 2, tzinfo=timezone.utc)},
        "tags": ["a", "b"],
        "featuredImage": None,
        "draft": False,
    }
    assert decode_fields(encode_fields(data)) == data


def test_get_missing_document_returns_none():
    store, session = _store(_response(404))
    assert store.get("posts", "wp_1") is None
    method, url = session.request.call_args[0]
    assert (method, url) == ("GET", f"{ROOT}/posts/wp_1")
    assert session.request.call_args[1]["headers"]["Authorization"] == "Bearer token"


def test_get_decodes_fields():
    store, _ = _store(_response(200, {"fields": {"slug": {"stringValue": "hello"}}}))
    assert store.get("posts", "wp_1") == {"slug": "hello"}


def test_create_is_create_only():
    store, session = _store(_response(200))
    store.create("posts", "wp_1", {"slug": "hello"})
    method, url = session.request.call_args[0]
    kwargs = session.request.call_args[1]
    assert (method, url) == ("POST", f"{ROOT}/posts")
    assert kwargs["params"] == {"documentId": "wp_1"}
    assert kwargs["json"] == {"fields": {"slug": {"stringValue": "hello"}}}


def test_create_conflict_raises():
    store, _ = _store(_response(409, {"error": {"message": "Document already exists"}}))
    with pytest.raises(DocumentExistsError) as exc_info:
        store.create("posts", "wp_1", {"slug": "hello"})
    assert exc_info.value.status_code == 409


def test_overwrite_uses_patch():
    store, session = _store(_response(200))
    store.create("posts", "wp_1", {"slug": "hello"}, overwrite=True)
    assert session.request.call_args[0] == ("PATCH", f"{ROOT}/posts/wp_1")


def test_nest_field_paths():
    assert nest_field_paths({"content": "x", "meta.imageMigratedAt": 1, "meta.source": "sql"}) == {
        "content": "x",
        "meta": {"imageMigratedAt": 1, "source": "sql"},
    }


def test_update_patches_only_the_given_paths():
    store, session = _store(_response(200))
    store.update("posts", "wp_1", {"content": "<p>new</p>", "featuredImage.public_id": "blog/posts/c"})
    assert session.request.call_args[0] == ("PATCH", f"{ROOT}/posts/wp_1")
    kwargs = session.request.call_args[1]
    assert kwargs["params"] == [
        ("updateMask.fieldPaths", "content"),
        ("updateMask.fieldPaths", "featuredImage.public_id"),
        ("currentDocument.exists", "true"),
    ]
    assert kwargs["json"]["fields"] == {
        "content": {"stringValue": "<p>new</p>"},
        "featuredImage": {"mapValue": {"fields": {"public_id": {"stringValue": "blog/posts/c"}}}},
    }


def test_update_of_missing_document_raises():
    store, _ = _store(_response(404, {"error": {"message": "No document to update"}}))
    with pytest.raises(DocumentStoreError, match="No document to update") as exc_info:
        store.update("posts", "wp_9", {"content": ""})
    assert exc_info.value.status_code == 404


def test_find_by_slug():
    store, session = _store(
        _response(200, [{"document": {"name": f"{ROOT}/posts/wp_7", "fields": {}}}]),
        _response(200, [{"readTime": "2024-01-01T00:00:00Z"}]),
    )
    assert store.find_by_slug("posts", "hello") == "wp_7"
    assert store.find_by_slug("posts", "free") is None
    method, url = session.request.call_args[0]
    assert (method, url) == ("POST", f"{ROOT}:runQuery")
    where = session.request.call_args[1]["json"]["structuredQuery"]["where"]
    assert where["fieldFilter"]["value"] == {"stringValue": "free"}


def test_iter_documents_follows_pages():
    store, _ = _store(
        _response(200, {"documents": [{"name": f"{ROOT}/posts/wp_1", "fields": {}}], "nextPageToken": "p2"}),
        _response(200, {"documents": [{"name": f"{ROOT}/posts/wp_2", "fields": {}}]}),
    )
    assert [doc_id for doc_id, _ in store.iter_documents("posts")] == ["wp_1", "wp_2"]


def test_rate_limit_is_waited_out():
    limited = _response(429)
    limited.headers = {"Retry-After": "0"}
    store, session = _store(limited, _response(200))
    assert store.ping()
    assert session.request.call_count == 2


def test_errors_are_wrapped():
    store, _ = _store(_response(500, {"error": {"message": "internal"}}))
    with pytest.raises(DocumentStoreError, match="internal"):
        store.ping()

    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("boom")
    store = FirestoreRestStore("blog", "token", session=session)
    with pytest.raises(DocumentStoreError, match="boom"):
        store.get("posts", "wp_1")


def test_project_id_is_required():
    with pytest.raises(ValueError):
        FirestoreRestStore("", "token")
