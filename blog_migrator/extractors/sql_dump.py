"""
Loading of the WordPress tables the migration needs from a SQL dump.

:func:`load_tables` tokenizes each table once and bundles the Column Schema
with its rows.  The posts table is required; the other tables only enrich
the posts (authors, taxonomies, featured images), so a dump without them
still migrates, with a warning.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from blog_migrator.extractors.sql_tokenizer import Row, TableNotFoundError, extract_columns, tokenize
from blog_migrator.utils.errors import Diagnostics

logger = logging.getLogger(__name__)

REQUIRED_TABLES: Tuple[str, ...] = ("posts",)
OPTIONAL_TABLES: Tuple[str, ...] = ("users", "terms", "term_taxonomy", "term_relationships", "postmeta")


@dataclass(frozen=True)
class TableData:
    """Column Schema plus the raw rows of one legacy table."""

    name: str
    columns: Tuple[str, ...] = ()
    rows: List[Row] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class DumpTables:
    """The legacy tables of one dump, keyed by their unprefixed name."""

    prefix: str
    tables: Dict[str, TableData] = field(default_factory=dict)

    def get(self, name: str) -> TableData:
        return self.tables.get(name) or TableData(name=f"{self.prefix}{name}")

    def summary(self) -> Dict[str, int]:
        return {name: len(table) for name, table in self.tables.items()}


def read_dump(path: str) -> str:
    """Read a dump file.  Undecodable bytes are replaced rather than fatal."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"SQL dump not found: {path}")
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def load_table(dump_text: str, table_name: str, diagnostics: Optional[Diagnostics] = None) -> TableData:
    """Tokenize one table.  Raises :class:`TableNotFoundError` if it is absent."""
    rows = tokenize(dump_text, table_name, diagnostics)
    columns = extract_columns(dump_text, table_name)
    if not columns:
        logger.warning("No column schema found for `%s`; rows cannot be mapped", table_name)
    logger.info("Read %d rows from `%s` (%d columns)", len(rows), table_name, len(columns))
    return TableData(name=table_name, columns=columns, rows=rows)


def load_tables(
    dump_text: str,
    prefix: str = "wp_",
    diagnostics: Optional[Diagnostics] = None,
    *,
    required: Iterable[str] = REQUIRED_TABLES,
    optional: Iterable[str] = OPTIONAL_TABLES,
) -> DumpTables:
    """Load the required and optional tables of a dump.

    :raises TableNotFoundError: when a required table is missing; this is a
        fatal setup error for the caller.
    """
    bundle = DumpTables(prefix=prefix)
    for name in required:
        bundle.tables[name] = load_table(dump_text, f"{prefix}{name}", diagnostics)
    for name in optional:
        try:
            bundle.tables[name] = load_table(dump_text, f"{prefix}{name}", diagnostics)
        except TableNotFoundError:
            logger.warning("Optional table `%s%s` not found in dump", prefix, name)
    return bundle
