"""
Tokenizer for the ``INSERT ... VALUES`` statements of a MySQL dump.

The legacy database is only available as a text dump, so rows are
recovered by scanning the VALUES clauses character by character instead of
loading the dump into a SQL engine.  The scanner keeps four states
(normal, inside single quotes, inside double quotes, inside backticks), an
escape flag and a parenthesis depth counter:

* depth 0 sits between rows, ``(`` opens a row and its first value;
* a top-level ``,`` inside a row closes the current value;
* ``)`` closes the last value and appends the row to the result;
* unquoted ``NULL`` becomes ``None``, ``''`` stays an empty string and
  numbers are kept as numeric-looking strings.

Malformed statements never abort a parse: the partial row is dropped, a
``malformed_statement`` diagnostic is recorded and scanning resumes at the
next ``INSERT INTO `table``` occurrence.

Usage example::

    from blog_migrator.extractors.sql_tokenizer import extract_columns, tokenize

    columns = extract_columns(dump_text, "wp_posts")
    rows = tokenize(dump_text, "wp_posts")
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from blog_migrator.utils.errors import Diagnostics

logger = logging.getLogger(__name__)

Row = List[Optional[str]]

__all__ = [
    "Row",
    "TableNotFoundError",
    "tokenize",
    "extract_columns",
    "list_tables",
    "sql_literal",
    "encode_row",
]


class TableNotFoundError(LookupError):
    """Raised when a dump holds no ``INSERT`` statement for the requested table."""

    def __init__(self, table_name: str) -> None:
        super().__init__(f"Table `{table_name}` not found in dump")
        self.table_name = table_name


_ESCAPES: Dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "0": "\x00",
    "b": "\b",
    "Z": "\x1a",
}
_QUOTES = ("'", '"', "`")
_STATEMENT_START = "INSERT INTO "
_INTRODUCER = re.compile(r"_[A-Za-z0-9]+")
_VALUES = re.compile(r"\s*(?:\((?:`[^`]*`|[^)`])*\)\s*)?VALUES\s*", re.IGNORECASE)
_ANY_INSERT = re.compile(r"(?i:INSERT\s+(?:IGNORE\s+)?INTO)\s+`([^`]+)`")

# Column layouts of the WordPress core tables, used when the dump was taken
# without --complete-insert and carries no CREATE TABLE for the table.
WORDPRESS_SCHEMAS: Dict[str, Tuple[str, ...]] = {
    "posts": (
        "ID", "post_author", "post_date", "post_date_gmt", "post_content",
        "post_title", "post_excerpt", "post_status", "comment_status", "ping_status",
        "post_password", "post_name", "to_ping", "pinged", "post_modified",
        "post_modified_gmt", "post_content_filtered", "post_parent", "guid",
        "menu_order", "post_type", "post_mime_type", "comment_count",
    ),
    "users": (
        "ID", "user_login", "user_pass", "user_nicename", "user_email",
        "user_url", "user_registered", "user_activation_key", "user_status",
        "display_name",
    ),
    "terms": ("term_id", "name", "slug", "term_group"),
    "term_taxonomy": ("term_taxonomy_id", "term_id", "taxonomy", "description", "parent", "count"),
    "term_relationships": ("object_id", "term_taxonomy_id", "term_order"),
    "postmeta": ("meta_id", "post_id", "meta_key", "meta_value"),
}


def _insert_pattern(table_name: str) -> Pattern[str]:
    return re.compile(r"(?i:INSERT\s+(?:IGNORE\s+)?INTO)\s+`%s`" % re.escape(table_name))


class _Malformed(Exception):
    """Internal signal: the statement being scanned is unbalanced."""

    def __init__(self, reason: str, resume_at: int) -> None:
        super().__init__(reason)
        self.reason = reason
        self.resume_at = resume_at


def _finish_value(buf: List[str], quoted: bool) -> Optional[str]:
    text = "".join(buf)
    if quoted:
        return text
    text = text.strip()
    if text == "NULL" or text == "":
        return None
    return text


def _at_statement_start(text: str, i: int) -> bool:
    """True when a newline at ``i`` is followed by a new INSERT statement."""
    return text.startswith(_STATEMENT_START, i + 1)


def _scan_values(text: str, start: int, rows: List[Row]) -> int:
    """Scan one VALUES clause starting at ``start``.

    Complete rows are appended to ``rows`` as they close.  Returns the
    position just after the statement.  Raises :class:`_Malformed` when the
    statement ends while a row or a quoted value is still open.
    """
    n = len(text)
    i = start
    depth = 0
    quote: Optional[str] = None
    escape_next = False
    row: Row = []
    buf: List[str] = []
    quoted = False

    while i < n:
        ch = text[i]

        if quote is not None:
            if escape_next:
                buf.append(_ESCAPES.get(ch, ch))
                escape_next = False
                i += 1
                continue
            if ch == "\\":
                escape_next = True
                i += 1
                continue
            if ch == quote:
                if i + 1 < n and text[i + 1] == quote:
                    buf.append(quote)
                    i += 2
                    continue
                quote = None
                i += 1
                continue
            if ch == "\n":
                if _at_statement_start(text, i):
                    raise _Malformed("unterminated quoted value", i + 1)
                buf.append(ch)
                i += 1
                continue
            # Copy the run of ordinary characters up to the next special one.
            j = i + 1
            while j < n and text[j] not in ("\\", quote, "\n"):
                j += 1
            buf.append(text[i:j])
            i = j
            continue

        if escape_next:
            if depth > 0:
                buf.append(_ESCAPES.get(ch, ch))
            escape_next = False
            i += 1
            continue

        if ch == "\\":
            escape_next = True
        elif ch in _QUOTES:
            if depth == 1:
                pending = "".join(buf).strip()
                if not quoted and (not pending or _INTRODUCER.fullmatch(pending)):
                    buf = []
                quoted = True
            quote = ch
        elif ch == "(":
            depth += 1
            if depth == 1:
                row, buf, quoted = [], [], False
            else:
                buf.append(ch)
        elif ch == ")":
            if depth == 0:
                raise _Malformed("unbalanced closing parenthesis", i + 1)
            depth -= 1
            if depth == 0:
                row.append(_finish_value(buf, quoted))
                rows.append(row)
                row, buf, quoted = [], [], False
            else:
                buf.append(ch)
        elif ch == "," and depth == 1:
            row.append(_finish_value(buf, quoted))
            buf, quoted = [], False
        elif ch == ";" and depth == 0:
            return i + 1
        elif ch == ";" and depth == 1:
            raise _Malformed("statement terminated inside a row", i + 1)
        elif ch == "\n" and _at_statement_start(text, i):
            if depth > 0:
                raise _Malformed("row left open at end of statement", i + 1)
            return i + 1
        elif depth > 0:
            if not (quoted and ch.isspace()):
                buf.append(ch)
        i += 1

    if quote is not None:
        raise _Malformed("unterminated quoted value at end of dump", n)
    if depth > 0:
        raise _Malformed("row left open at end of dump", n)
    return n


def tokenize(dump_text: str, table_name: str, diagnostics: Optional[Diagnostics] = None) -> List[Row]:
    """Return every row of ``table_name`` found in the dump's INSERT statements.

    :param dump_text: Full text of the SQL dump.
    :param table_name: Exact (prefixed) table name, e.g. ``wp_posts``.
    :param diagnostics: Optional counter receiving ``malformed_statement``
        entries for every dropped statement tail.
    :return: A list of rows; each row is a list of strings or ``None``.
    :raises TableNotFoundError: if the table has no INSERT statement at all.
    """
    pattern = _insert_pattern(table_name)
    match = pattern.search(dump_text)
    if match is None:
        raise TableNotFoundError(table_name)

    rows: List[Row] = []
    statements = 0
    while match is not None:
        statements += 1
        values = _VALUES.match(dump_text, match.end())
        if values is None:
            logger.warning("Skipping INSERT into `%s` at offset %d: no VALUES clause", table_name, match.start())
            if diagnostics is not None:
                diagnostics.record("malformed_statement", f"{table_name}@{match.start()}: no VALUES clause")
            match = pattern.search(dump_text, match.end())
            continue
        try:
            resume_at = _scan_values(dump_text, values.end(), rows)
        except _Malformed as exc:
            logger.warning(
                "Dropped partial row of `%s` (statement at offset %d): %s",
                table_name,
                match.start(),
                exc.reason,
            )
            if diagnostics is not None:
                diagnostics.record("malformed_statement", f"{table_name}@{match.start()}: {exc.reason}")
            resume_at = exc.resume_at if exc.resume_at < len(dump_text) else match.end()
        match = pattern.search(dump_text, max(resume_at, match.end()))

    logger.debug("Tokenized %d rows from %d statements for `%s`", len(rows), statements, table_name)
    return rows


def _split_columns(column_list: str) -> Tuple[str, ...]:
    return tuple(col.strip().strip("`\"") for col in column_list.split(",") if col.strip())


def _columns_from_create_table(dump_text: str, table_name: str) -> Tuple[str, ...]:
    create = re.search(
        r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?`%s`\s*\((.*?)\n\)" % re.escape(table_name),
        dump_text,
        re.IGNORECASE | re.DOTALL,
    )
    if not create:
        return ()
    return tuple(re.findall(r"^\s*`([^`]+)`\s+\w+", create.group(1), re.MULTILINE))


def _default_schema(table_name: str) -> Tuple[str, ...]:
    matches = [suffix for suffix in WORDPRESS_SCHEMAS if table_name == suffix or table_name.endswith("_" + suffix)]
    if not matches:
        return ()
    return WORDPRESS_SCHEMAS[max(matches, key=len)]


def extract_columns(dump_text: str, table_name: str) -> Tuple[str, ...]:
    """Return the Column Schema of ``table_name``.

    The column list of the first INSERT that names its columns wins; dumps
    without column lists fall back to the ``CREATE TABLE`` definition and
    finally to the stock WordPress layout for core tables.  An empty tuple
    means the schema is unknown.
    """
    explicit = re.search(
        r"(?i:INSERT\s+(?:IGNORE\s+)?INTO)\s+`%s`\s*\(((?:`[^`]*`|[^)`])*)\)\s*(?i:VALUES)" % re.escape(table_name),
        dump_text,
    )
    if explicit:
        return _split_columns(explicit.group(1))
    return _columns_from_create_table(dump_text, table_name) or _default_schema(table_name)


def list_tables(dump_text: str) -> List[str]:
    """Names of the tables that have INSERT statements, in dump order."""
    seen: Dict[str, None] = {}
    for match in _ANY_INSERT.finditer(dump_text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def sql_literal(value: object) -> str:
    """Encode a Python value as a MySQL literal, the way mysqldump does."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value)
    text = (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "\\0")
        .replace("\x1a", "\\Z")
    )
    return f"'{text}'"


def encode_row(values: Sequence[object]) -> str:
    """Encode ``values`` as one ``(...)`` row literal."""
    return "(" + ",".join(sql_literal(v) for v in values) + ")"


def encode_insert(table_name: str, columns: Iterable[str], rows: Iterable[Sequence[object]]) -> str:
    """Build a complete ``INSERT INTO`` statement, mostly useful for fixtures."""
    column_list = ", ".join(f"`{c}`" for c in columns)
    values = ",".join(encode_row(r) for r in rows)
    return f"INSERT INTO `{table_name}` ({column_list}) VALUES {values};\n"
