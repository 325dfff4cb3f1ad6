#!/usr/bin/env python3
"""
Reports which destination posts still reference images outside the asset
service, i.e. posts a migration run could not (or did not yet) fix.
``python main.py --stored-images`` migrates what it lists.
"""

import argparse
import os
import sys
from typing import Any, Dict, List

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from blog_migrator.config import DEFAULT_CONFIG_FILE, load_config  # noqa: E402
from blog_migrator.migrators.asset_service import CloudinaryAssetService  # noqa: E402
from blog_migrator.migrators.document_store import DocumentStoreError, FirestoreRestStore  # noqa: E402
from blog_migrator.models.records import ImageReference  # noqa: E402
from blog_migrator.parsers.html_images import extract_image_urls  # noqa: E402


def legacy_images(fields: Dict[str, Any], assets: CloudinaryAssetService) -> List[str]:
    """Image URLs of a post document that are not on the asset service."""
    found: List[str] = []
    featured = ImageReference.from_legacy(fields.get("featuredImage"))
    if featured is not None and not featured.is_migrated and not assets.is_destination_url(featured.source_url):
        found.append(featured.source_url)
    found.extend(extract_image_urls(fields.get("content") or "", assets.is_destination_url))
    return found


def main() -> int:
    parser = argparse.ArgumentParser(description="Check which posts still use legacy image URLs.")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE)
    parser.add_argument("--verbose", action="store_true", help="print every legacy URL")
    args = parser.parse_args()

    config = load_config(args.config)
    store = FirestoreRestStore.from_config(config["destination"])
    assets = CloudinaryAssetService.from_config(config["assets"])
    collection = config["destination"]["posts_collection"]

    total = pending = 0
    try:
        for doc_id, fields in store.iter_documents(collection):
            total += 1
            urls = legacy_images(fields, assets)
            if not urls:
                continue
            pending += 1
            print(f"{doc_id} ({fields.get('slug', '')}): {len(urls)} legacy image(s)")
            if args.verbose:
                for url in urls:
                    print(f"    {url}")
    except DocumentStoreError as e:
        print(f"Failed to list {collection}: {e}")
        return 1

    print(f"\n{pending} of {total} posts still reference legacy images.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
