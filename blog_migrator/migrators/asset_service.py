"""
Destination asset service.

Images are uploaded to Cloudinary with a signed multipart POST to
``{api_base_url}/{cloud_name}/image/upload``.  The signature is the SHA-1
of the alphabetically sorted upload parameters followed by the API secret.
Delivery URLs are built from the returned ``public_id`` with a comma
separated transformation segment, e.g.::

    https://res.cloudinary.com/demo/image/upload/w_800,f_auto,q_auto/blog/posts/cover-1a2b3c4d
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol
from urllib.parse import urlparse

import requests

from blog_migrator.migrators.http import with_retries

logger = logging.getLogger(__name__)

# Transformation keyword -> Cloudinary URL parameter prefix
_TRANSFORM_KEYS: Dict[str, str] = {
    "width": "w",
    "height": "h",
    "crop": "c",
    "gravity": "g",
    "fetch_format": "f",
    "format": "f",
    "quality": "q",
}


class MediaUploadError(Exception):
    """Raised when the asset service rejects an upload."""


class AssetService(Protocol):
    def upload(self, data: bytes, mime_type: str, folder: str, filename: str) -> str:
        ...

    def build_url(self, identifier: str, **transforms: Any) -> str:
        ...

    def is_destination_url(self, url: str) -> bool:
        ...


def build_transformation(transforms: Mapping[str, Any]) -> str:
    """``{"width": 800, "quality": "auto"}`` -> ``"w_800,q_auto"``."""
    parts = []
    for key, value in transforms.items():
        if value is None or value == "":
            continue
        prefix = _TRANSFORM_KEYS.get(key)
        if prefix is None:
            raise ValueError(f"Unknown image transformation: {key}")
        parts.append(f"{prefix}_{value}")
    return ",".join(parts)


def sign_params(params: Mapping[str, Any], api_secret: str) -> str:
    """SHA-1 signature of the sorted ``key=value`` pairs plus the API secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryAssetService:
    """Signed uploads and delivery URLs for one Cloudinary cloud."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str = "",
        api_secret: str = "",
        *,
        api_base_url: str = "https://api.cloudinary.com/v1_1",
        delivery_host: str = "res.cloudinary.com",
        folder_root: str = "",
        timeout: float = 60,
        session: Optional[requests.Session] = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        if not cloud_name:
            raise ValueError("Cloudinary cloud name is required")
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.delivery_host = delivery_host
        self.folder_root = folder_root.strip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._time = time_fn

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], session: Optional[requests.Session] = None) -> "CloudinaryAssetService":
        return cls(
            cfg.get("cloud_name", ""),
            cfg.get("api_key", ""),
            cfg.get("api_secret", ""),
            api_base_url=cfg.get("api_base_url", "https://api.cloudinary.com/v1_1"),
            delivery_host=cfg.get("delivery_host", "res.cloudinary.com"),
            folder_root=cfg.get("folder_root", ""),
            timeout=cfg.get("timeout", 60),
            session=session,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def full_folder(self, folder: str) -> str:
        return "/".join(part for part in (self.folder_root, folder.strip("/")) if part)

    def upload(self, data: bytes, mime_type: str, folder: str, filename: str) -> str:
        """Upload ``data`` and return the ``public_id`` Cloudinary assigned.

        The public id is the filename without its extension inside
        ``folder``, so uploading the same file twice replaces the asset
        instead of duplicating it.
        """
        if not self.has_credentials:
            raise MediaUploadError("Cloudinary API key and secret are required for uploads")
        params: Dict[str, Any] = {
            "folder": self.full_folder(folder),
            "public_id": os.path.splitext(filename)[0],
            "timestamp": int(self._time()),
        }
        payload = {**params, "api_key": self.api_key, "signature": sign_params(params, self.api_secret)}
        url = f"{self.api_base_url}/{self.cloud_name}/image/upload"

        def do_request() -> requests.Response:
            return self.session.post(
                url,
                data=payload,
                files={"file": (filename, data, mime_type)},
                timeout=self.timeout,
            )

        try:
            resp = with_retries(do_request)
        except requests.RequestException as e:
            raise MediaUploadError(f"Upload of {filename} failed: {e}") from e
        if resp.status_code != 200:
            try:
                detail = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                detail = resp.text
            raise MediaUploadError(f"Upload of {filename} rejected ({resp.status_code}): {detail}")
        public_id = resp.json().get("public_id")
        if not public_id:
            raise MediaUploadError(f"Upload of {filename} returned no public_id")
        logger.debug("Uploaded %s as %s", filename, public_id)
        return public_id

    def build_url(self, identifier: str, **transforms: Any) -> str:
        base = f"https://{self.delivery_host}/{self.cloud_name}/image/upload"
        transformation = build_transformation(transforms)
        if transformation:
            return f"{base}/{transformation}/{identifier}"
        return f"{base}/{identifier}"

    def is_destination_url(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return host == self.delivery_host or host.endswith(".cloudinary.com")
