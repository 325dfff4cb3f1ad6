"""In-memory stand-ins for the store, the asset service and the legacy image host."""

import os

from blog_migrator.migrators.asset_service import CloudinaryAssetService, MediaUploadError
from blog_migrator.migrators.document_store import DocumentExistsError
from blog_migrator.migrators.legacy_source import MediaDownloadError


class FakeStore:
    """In-memory document store keyed by (collection, doc_id)."""

    def __init__(self):
        self.docs = {}
        self.writes = []

    def get(self, collection, doc_id):
        return self.docs.get((collection, doc_id))

    def create(self, collection, doc_id, data, *, overwrite=False):
        if (collection, doc_id) in self.docs and not overwrite:
            raise DocumentExistsError(f"{collection}/{doc_id} already exists", 409)
        self.docs[(collection, doc_id)] = dict(data)
        self.writes.append((collection, doc_id))

    def update(self, collection, doc_id, fields):
        doc = self.docs[(collection, doc_id)]
        for path, value in fields.items():
            *parents, leaf = path.split(".")
            node = doc
            for key in parents:
                node = node.setdefault(key, {})
            node[leaf] = value
        self.writes.append((collection, doc_id))

    def find_by_slug(self, collection, slug):
        for (coll, doc_id), data in self.docs.items():
            if coll == collection and data.get("slug") == slug:
                return doc_id
        return None

    def iter_documents(self, collection):
        for (coll, doc_id), data in list(self.docs.items()):
            if coll == collection:
                yield doc_id, data

    def ping(self):
        return True


class FakeAssets(CloudinaryAssetService):
    """Real URL building, recorded uploads."""

    def __init__(self, failing=()):
        super().__init__("demo", "key", "secret", folder_root="blog")
        self.uploads = []
        self.failing = set(failing)

    def upload(self, data, mime_type, folder, filename):
        if filename in self.failing:
            raise MediaUploadError(f"Upload of {filename} rejected (400): bad image")
        self.uploads.append((filename, mime_type, folder))
        return f"{self.full_folder(folder)}/{os.path.splitext(filename)[0]}"


class FakeSource:
    """Legacy image host answering every URL except the failing ones."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def fetch(self, url):
        self.calls.append(url)
        if url in self.failing:
            raise MediaDownloadError(url, "HTTP 404", 404)
        return b"image-bytes:" + url.encode("utf-8")

