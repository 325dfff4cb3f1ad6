"""
Destination document store.

The orchestrator only needs a handful of operations from the store, captured by
the :class:`DocumentStore` protocol.  :class:`FirestoreRestStore`
implements them over the Firestore REST API:

* ``get`` reads ``documents/{collection}/{id}``;
* ``create`` uses ``createDocument`` with an explicit ``documentId`` so an
  existing document is never replaced, unless ``overwrite`` is requested,
  in which case the document is PATCHed;
* ``update`` PATCHes selected field paths of an existing document through
  an ``updateMask``;
* ``find_by_slug`` runs a one-result structured query on ``slug``;
* ``iter_documents`` pages through a collection;
* ``ping`` lists at most one document of a collection.

Firestore stores typed values (``stringValue``, ``timestampValue``, ...),
so plain Python values are converted with :func:`encode_value` and back
with :func:`decode_value`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol, Tuple

import requests

from blog_migrator.migrators.http import DEFAULT_TIMEOUT, bearer_headers, with_retries

logger = logging.getLogger(__name__)


class DocumentStoreError(Exception):
    """Raised when the destination store rejects or cannot serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DocumentExistsError(DocumentStoreError):
    """Raised by a create-only write when the document id is already taken."""


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any], *, overwrite: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        ...

    def find_by_slug(self, collection: str, slug: str) -> Optional[str]:
        ...

    def iter_documents(self, collection: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        ...

    def ping(self) -> bool:
        ...


###############################################################################
# Value encoding
###############################################################################

def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_value(value: Any) -> Dict[str, Any]:
    """Convert a Python value into a Firestore typed ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": _timestamp(value)}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple, set)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    return {"stringValue": str(value)}


def encode_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key): encode_value(val) for key, val in data.items()}


def decode_value(value: Mapping[str, Any]) -> Any:
    """Convert a Firestore typed ``Value`` back into a Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return datetime.fromisoformat(value["timestampValue"].replace("Z", "+00:00"))
    if "stringValue" in value:
        return value["stringValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    # referenceValue, geoPointValue and bytesValue are kept as sent
    return next(iter(value.values()), None)


def decode_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(val) for key, val in fields.items()}


def nest_field_paths(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn ``{"meta.imageMigratedAt": t}`` into ``{"meta": {"imageMigratedAt": t}}``."""
    nested: Dict[str, Any] = {}
    for path, value in fields.items():
        *parents, leaf = path.split(".")
        node = nested
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
    return nested


###############################################################################
# Firestore REST client
###############################################################################

class FirestoreRestStore:
    """Document store backed by the Firestore REST API."""

    def __init__(
        self,
        project_id: str,
        access_token: str,
        *,
        database: str = "(default)",
        base_url: str = "https://firestore.googleapis.com/v1",
        timeout: float = DEFAULT_TIMEOUT,
        ping_collection: str = "posts",
        session: Optional[requests.Session] = None,
    ) -> None:
        if not project_id:
            raise ValueError("Firestore project id is required")
        self.project_id = project_id
        self.access_token = access_token
        self.timeout = timeout
        self.ping_collection = ping_collection
        self.session = session or requests.Session()
        self.root = f"{base_url.rstrip('/')}/projects/{project_id}/databases/{database}/documents"

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], session: Optional[requests.Session] = None) -> "FirestoreRestStore":
        return cls(
            cfg.get("project_id", ""),
            cfg.get("access_token", ""),
            database=cfg.get("database", "(default)"),
            base_url=cfg.get("base_url", "https://firestore.googleapis.com/v1"),
            timeout=cfg.get("timeout", DEFAULT_TIMEOUT),
            ping_collection=cfg.get("posts_collection", "posts"),
            session=session,
        )

    def _headers(self) -> Dict[str, str]:
        return {**bearer_headers(self.access_token), "Content-Type": "application/json"}

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        def do_request() -> requests.Response:
            return self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)

        try:
            return with_retries(do_request)
        except requests.RequestException as e:
            raise DocumentStoreError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _error(resp: requests.Response, action: str) -> DocumentStoreError:
        try:
            detail = resp.json().get("error", {}).get("message", resp.text)
        except ValueError:
            detail = resp.text
        return DocumentStoreError(f"{action} failed ({resp.status_code}): {detail}", resp.status_code)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        resp = self._request("GET", f"{self.root}/{collection}/{doc_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise self._error(resp, f"get {collection}/{doc_id}")
        return decode_fields(resp.json().get("fields", {}))

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any], *, overwrite: bool = False) -> None:
        body = {"fields": encode_fields(data)}
        if overwrite:
            resp = self._request("PATCH", f"{self.root}/{collection}/{doc_id}", json=body)
        else:
            resp = self._request("POST", f"{self.root}/{collection}", params={"documentId": doc_id}, json=body)
        if resp.status_code == 409:
            raise DocumentExistsError(f"{collection}/{doc_id} already exists", 409)
        if resp.status_code not in (200, 201):
            raise self._error(resp, f"write {collection}/{doc_id}")
        logger.debug("Wrote %s/%s", collection, doc_id)

    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Set the dotted field paths in ``fields``, leaving the rest of the document alone."""
        params = [("updateMask.fieldPaths", path) for path in fields]
        params.append(("currentDocument.exists", "true"))
        body = {"fields": encode_fields(nest_field_paths(fields))}
        resp = self._request("PATCH", f"{self.root}/{collection}/{doc_id}", params=params, json=body)
        if resp.status_code != 200:
            raise self._error(resp, f"update {collection}/{doc_id}")
        logger.debug("Updated %s/%s: %s", collection, doc_id, ", ".join(fields))

    def find_by_slug(self, collection: str, slug: str) -> Optional[str]:
        query = {
            "structuredQuery": {
                "from": [{"collectionId": collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "slug"},
                        "op": "EQUAL",
                        "value": {"stringValue": slug},
                    }
                },
                "limit": 1,
            }
        }
        resp = self._request("POST", f"{self.root}:runQuery", json=query)
        if resp.status_code != 200:
            raise self._error(resp, f"slug lookup {collection}/{slug}")
        for item in resp.json():
            document = item.get("document")
            if document:
                return document["name"].rsplit("/", 1)[-1]
        return None

    def iter_documents(self, collection: str, page_size: int = 100) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """Yield ``(doc_id, fields)`` for every document of ``collection``."""
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": page_size}
            if page_token:
                params["pageToken"] = page_token
            resp = self._request("GET", f"{self.root}/{collection}", params=params)
            if resp.status_code != 200:
                raise self._error(resp, f"list {collection}")
            payload = resp.json()
            for document in payload.get("documents", []):
                yield document["name"].rsplit("/", 1)[-1], decode_fields(document.get("fields", {}))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return

    def ping(self) -> bool:
        resp = self._request("GET", f"{self.root}/{self.ping_collection}", params={"pageSize": 1})
        if resp.status_code != 200:
            raise self._error(resp, "store ping")
        return True
