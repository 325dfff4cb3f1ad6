"""
Downloads from the legacy image hosts.

Images uploaded through the old CMS live in Firebase-style object storage
and are referenced by download URLs of the form::

    https://firebasestorage.googleapis.com/v0/b/<bucket>/o/<quoted path>?alt=media&token=...

Those are fetched through :class:`LegacyStorageClient`, which rebuilds the
object URL from bucket and path and authenticates with the configured
token.  Any other URL (WordPress uploads, third-party hosts) is fetched
with a plain GET.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional, Tuple
from urllib.parse import quote, unquote, urlparse

import requests

from blog_migrator.migrators.http import DEFAULT_TIMEOUT, bearer_headers, with_retries

logger = logging.getLogger(__name__)

_STORAGE_PATH = re.compile(r"/v0/b/([^/]+)/o/([^?#]+)")


class MediaDownloadError(Exception):
    """Raised when an image cannot be fetched from its legacy host."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{reason}: {url}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


def extract_storage_path(url: str) -> Optional[Tuple[str, str]]:
    """Return ``(bucket, object_path)`` for an object-storage URL, else ``None``."""
    match = _STORAGE_PATH.search(urlparse(url).path or "")
    if not match:
        return None
    return match.group(1), unquote(match.group(2))


class LegacyStorageClient:
    """Fetches images from the legacy object storage and from plain URLs."""

    def __init__(
        self,
        base_url: str = "https://firebasestorage.googleapis.com/v0",
        token: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], session: Optional[requests.Session] = None) -> "LegacyStorageClient":
        return cls(
            cfg.get("storage_base_url", "https://firebasestorage.googleapis.com/v0"),
            cfg.get("storage_token", ""),
            timeout=cfg.get("download_timeout", DEFAULT_TIMEOUT),
            session=session,
        )

    def object_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/b/{bucket}/o/{quote(path, safe='')}?alt=media"

    def _get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> bytes:
        def do_request() -> requests.Response:
            return self.session.get(url, headers=dict(headers or {}), timeout=self.timeout)

        try:
            resp = with_retries(do_request)
        except requests.Timeout as e:
            raise MediaDownloadError(url, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise MediaDownloadError(url, f"network error ({e.__class__.__name__})") from e
        if resp.status_code != 200:
            raise MediaDownloadError(url, f"HTTP {resp.status_code}", resp.status_code)
        if not resp.content:
            raise MediaDownloadError(url, "empty response body", resp.status_code)
        return resp.content

    def download(self, bucket: str, path: str) -> bytes:
        """Fetch one object from the legacy bucket."""
        return self._get(self.object_url(bucket, path), bearer_headers(self.token))

    def fetch(self, url: str) -> bytes:
        """Fetch ``url``, routing object-storage URLs through :meth:`download`.

        Without a storage token the URL is fetched as is; public download
        URLs carry their own ``token`` query parameter.
        """
        location = extract_storage_path(url)
        if location is not None and self.token:
            bucket, path = location
            logger.debug("Downloading gs://%s/%s", bucket, path)
            return self.download(bucket, path)
        return self._get(url)
