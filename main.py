"""
Entry point for the legacy blog migration tool.

Examples::

    python main.py --dump docs/blog.sql --dry-run --limit=5
    python main.py --dump docs/blog.sql --skip-existing
    python main.py --stored-images --content-only --limit=20
    python main.py --json-export docs/posts.json --featured-only

Exit code 0 means the run completed, even if some records failed (they are
listed in the summary and in ``reports/migration/report.json``).  Exit
code 1 means the run could not start.
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from blog_migrator.config import DEFAULT_CONFIG_FILE, ConfigError, load_config
from blog_migrator.extractors.json_export import load_export
from blog_migrator.extractors.sql_dump import load_tables, read_dump
from blog_migrator.extractors.sql_tokenizer import TableNotFoundError
from blog_migrator.mappers.record_mapper import RecordMapper
from blog_migrator.migration_tool import LegacyContent, MigrationOptions, MigrationOrchestrator
from blog_migrator.migrators.asset_service import CloudinaryAssetService
from blog_migrator.migrators.document_store import DocumentStoreError, FirestoreRestStore
from blog_migrator.migrators.legacy_source import LegacyStorageClient
from blog_migrator.migrators.media_migrator import MediaMigrator
from blog_migrator.utils.errors import Diagnostics
from blog_migrator.utils.log import configure_logging
from blog_migrator.utils.pre_flight_checks import PreFlightCheckError, run_pre_flight_checks

logger = logging.getLogger("blog_migrator.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Migrate a legacy WordPress blog to the new document store.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--dump", help="MySQL dump with the WordPress tables")
    source.add_argument("--json-export", help="posts.json produced by the REST fetcher")
    source.add_argument(
        "--stored-images",
        action="store_true",
        help="migrate the remaining legacy images of posts already in the store, in place",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="JSON configuration file")
    parser.add_argument("--dry-run", action="store_true", help="run the whole pipeline without writing or uploading")
    parser.add_argument("--limit", type=int, help="migrate at most N posts")
    existing = parser.add_mutually_exclusive_group()
    existing.add_argument(
        "--skip-existing", action="store_true", help="skip posts whose document already exists (the default)"
    )
    existing.add_argument("--force", action="store_true", help="overwrite documents and re-migrate marked images")
    images = parser.add_mutually_exclusive_group()
    images.add_argument("--featured-only", action="store_true", help="only migrate featured images")
    images.add_argument("--content-only", action="store_true", help="only migrate images inside post bodies")
    parser.add_argument("--table-prefix", help="table prefix of the dump (default wp_)")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def apply_cli_overrides(config: dict, args: argparse.Namespace) -> dict:
    """CLI flags take precedence over the configuration file."""
    legacy = config["legacy"]
    migration = config["migration"]
    if args.dump:
        legacy["dump_path"] = args.dump
        legacy["json_export"] = ""
    if args.json_export:
        legacy["json_export"] = args.json_export
        legacy["dump_path"] = ""
    if args.table_prefix:
        legacy["table_prefix"] = args.table_prefix
    if args.limit is not None:
        migration["limit"] = args.limit
    for flag in ("dry_run", "force", "featured_only", "content_only"):
        if getattr(args, flag):
            migration[flag] = True
    return config


def load_content(config: dict, diagnostics: Diagnostics) -> Tuple[LegacyContent, Optional[str]]:
    """Read the legacy source named in ``config``.  Returns the records and the dump text."""
    legacy = config["legacy"]
    if legacy.get("dump_path"):
        dump_text = read_dump(legacy["dump_path"])
        tables = load_tables(dump_text, legacy.get("table_prefix", "wp_"), diagnostics)
        logger.info("Tables read: %s", tables.summary())
        mapper = RecordMapper(tables, diagnostics, old_domain=legacy.get("old_domain", ""))
        return LegacyContent(users=mapper.users(), terms=mapper.terms(), posts=mapper.posts()), dump_text
    if legacy.get("json_export"):
        return LegacyContent(posts=load_export(legacy["json_export"], diagnostics)), None
    raise PreFlightCheckError("No legacy source configured: pass --dump or --json-export.")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to run the migration tool.
    """
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        config = apply_cli_overrides(load_config(args.config), args)
        options = MigrationOptions.from_config(config)
        diagnostics = Diagnostics()
        content, dump_text = (None, None) if args.stored_images else load_content(config, diagnostics)
        store = FirestoreRestStore.from_config(config["destination"])
        run_pre_flight_checks(
            config, store, dump_text=dump_text, dry_run=options.dry_run, check_source=not args.stored_images
        )
        assets = CloudinaryAssetService.from_config(config["assets"])
    except (ConfigError, FileNotFoundError, TableNotFoundError, PreFlightCheckError, ValueError) as e:
        logger.error("Setup failed: %s", e)
        print(f"Migration aborted before processing any record: {e}")
        return 1

    media = MediaMigrator(
        assets,
        LegacyStorageClient.from_config(config["legacy"]),
        unreachable_prefixes=config["legacy"].get("unreachable_prefixes", []),
        content_transform=config["assets"].get("content_transform"),
        dry_run=options.dry_run,
        diagnostics=diagnostics,
    )
    orchestrator = MigrationOrchestrator(store, media, options, diagnostics=diagnostics)

    if content is None:
        logger.info("Migrating legacy images of posts already in %s", options.posts_collection)
        try:
            report = orchestrator.migrate_stored_images()
        except DocumentStoreError as e:
            logger.error("Listing stored posts failed: %s", e)
            print(f"Migration aborted: {e}")
            return 1
    else:
        logger.info(
            "Starting migration: %d users, %d terms, %d posts",
            len(content.users), len(content.terms), len(content.posts),
        )
        report = orchestrator.run(content)
    path = report.save()
    print(report.summary())
    logger.info("Report saved to %s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
