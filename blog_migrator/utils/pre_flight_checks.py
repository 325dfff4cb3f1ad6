import logging
import os
from typing import Any, Mapping, Optional

from blog_migrator.extractors.sql_tokenizer import list_tables
from blog_migrator.migrators.document_store import DocumentStore, DocumentStoreError

logger = logging.getLogger(__name__)


class PreFlightCheckError(Exception):
    """Custom exception for pre-flight check failures."""
    pass


def run_pre_flight_checks(
    config: Mapping[str, Any],
    store: DocumentStore,
    *,
    dump_text: Optional[str] = None,
    dry_run: bool = False,
    check_source: bool = True,
) -> None:
    """
    Verifies that the source and the destination are usable before any
    record is touched.

    Args:
        config: The application configuration dictionary.
        store: The destination document store the run will write to.
        dump_text: Contents of the SQL dump, when migrating from one.
        dry_run: Asset credentials are not needed when nothing is uploaded.
        check_source: False when only documents already in the store are read.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    logger.info("Running pre-flight checks...")
    legacy = config.get("legacy", {})
    prefix = legacy.get("table_prefix", "wp_")

    # Check 1: the legacy source has posts
    if check_source and dump_text is not None:
        tables = list_tables(dump_text)
        if f"{prefix}posts" not in tables:
            found = ", ".join(tables) or "none"
            raise PreFlightCheckError(f"The dump has no data for `{prefix}posts` (tables with data: {found}).")
    elif check_source and legacy.get("json_export") and not os.path.exists(legacy["json_export"]):
        raise PreFlightCheckError(f"JSON export not found: {legacy['json_export']}")

    # Check 2: destination credentials and reachability
    destination = config.get("destination", {})
    if not destination.get("project_id"):
        raise PreFlightCheckError("Destination project id is missing (destination.project_id or FIRESTORE_PROJECT_ID).")
    if not destination.get("access_token"):
        raise PreFlightCheckError("Destination access token is missing (destination.access_token or FIRESTORE_ACCESS_TOKEN).")
    try:
        store.ping()
    except DocumentStoreError as e:
        if e.status_code in (401, 403):
            raise PreFlightCheckError("The destination access token is invalid or expired.") from e
        raise PreFlightCheckError(f"Destination store is unreachable: {e}") from e

    # Check 3: asset service credentials
    assets = config.get("assets", {})
    if not assets.get("cloud_name"):
        raise PreFlightCheckError("Asset service cloud name is missing (assets.cloud_name or CLOUDINARY_URL).")
    if not dry_run and not (assets.get("api_key") and assets.get("api_secret")):
        raise PreFlightCheckError("Asset service API key/secret are missing (CLOUDINARY_URL or CLOUDINARY_API_KEY/SECRET).")

    logger.info("Pre-flight checks passed successfully.")
