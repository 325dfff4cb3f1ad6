"""
Structured logging helpers for migration errors, successes and fallbacks.

The :mod:`blog_migrator.utils.errors` module centralizes the writing of log
entries for both failed and successful operations during the migration.
Each entry is appended to a JSON Lines file under ``reports/migration`` so
that the information can be reviewed or parsed after a run.

Two public functions are provided:

``report_error``
    Record an error that occurred for a legacy record.  An optional
    exception can be supplied and will be serialized to the log.

``report_ok``
    Record a successful step for a legacy record.  Additional key/value
    information can be attached to the entry via the ``extra`` parameter.

The ``ERRORS`` dictionary maps error or event codes to human readable
messages.  Codes not present in the dictionary fall back to the code itself.

:class:`Diagnostics` counts the tolerant fallbacks taken while parsing the
dump (dropped statements, nulled dates, orphan joins) so that none of them
disappear silently; the counters end up in the final run report.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Mapping of event codes used throughout the migration to descriptive messages.
# The keys include error, success and diagnostic codes as the same lookup is
# used by :func:`report_error`, :func:`report_ok` and the run report.
ERRORS: Dict[str, str] = {
    "MEDIA_DOWNLOAD": "Failed to download image from the legacy source",
    "MEDIA_UPLOAD": "Failed to upload image to the asset service",
    "STORE_WRITE": "Failed to write document to the destination store",
    "STORE_READ": "Failed to query the destination store",
    "SLUG_RESOLUTION": "Could not resolve a free slug",
    "UNEXPECTED": "Unexpected error while migrating record",
    "PERSISTED": "Document written to the destination store",
    "SKIPPED_EXISTING": "Destination document already exists",
    "IMAGES_MIGRATED": "Images of a stored document moved to the asset service",
    "malformed_statement": "INSERT statement with unbalanced quotes or parentheses dropped",
    "row_width_mismatch": "Row width differs from the column schema",
    "invalid_date": "Unparsable date mapped to null",
    "orphan_taxonomy": "Taxonomy row without a matching term skipped",
    "orphan_relationship": "Term relationship without a matching taxonomy row skipped",
    "unknown_status": "Unknown legacy status imported as draft",
    "excluded_trash": "Trashed record excluded",
    "invalid_record": "Record could not be projected and was dropped",
    "unreachable_source": "Image source is on an unreachable legacy path",
}

_REPORT_DIR = os.path.join("reports", "migration")
_ERROR_LOG = os.path.join(_REPORT_DIR, "errors.jsonl")
_OK_LOG = os.path.join(_REPORT_DIR, "success.jsonl")


def _write_jsonl(path: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``path``."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
        f.write("\n")


def _entry(code: str, subject: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "code": code,
        "message": ERRORS.get(code, code),
        "legacy_id": subject.get("legacy_id"),
        "slug": subject.get("slug"),
        "title": subject.get("title"),
    }


def report_error(code: str, subject: Mapping[str, Any], exc: Optional[BaseException] = None) -> None:
    """Log an error event for ``subject``.

    Parameters
    ----------
    code:
        A key identifying the type of error.  If ``code`` is present in
        :data:`ERRORS` its value will be used as the message.
    subject:
        Mapping describing the record.  Only the ``legacy_id``, ``slug`` and
        ``title`` keys are referenced if present.
    exc:
        Optional exception instance that triggered the error.  The string
        representation of the exception will be included in the log entry.
    """
    entry = _entry(code, subject)
    if exc is not None:
        entry["error"] = str(exc)
    logger.error("%s - %s", entry["message"], subject.get("legacy_id", ""))
    _write_jsonl(_ERROR_LOG, entry)


def report_ok(code: str, subject: Mapping[str, Any], extra: Optional[Dict[str, Any]] = None) -> None:
    """Log a successful event for ``subject``.

    Parameters
    ----------
    code:
        A key identifying the type of event.
    subject:
        Mapping describing the record.
    extra:
        Optional dictionary of additional fields to merge into the log entry.
    """
    entry = _entry(code, subject)
    if extra:
        entry.update(extra)
    logger.info("%s - %s", entry["message"], subject.get("legacy_id", ""))
    _write_jsonl(_OK_LOG, entry)


class Diagnostics:
    """Counter of tolerant fallbacks, with a few samples kept per code."""

    def __init__(self, sample_size: int = 5) -> None:
        self.sample_size = sample_size
        self.counts: Counter = Counter()
        self.samples: Dict[str, List[str]] = {}

    def record(self, code: str, detail: str = "") -> None:
        self.counts[code] += 1
        bucket = self.samples.setdefault(code, [])
        if detail and len(bucket) < self.sample_size:
            bucket.append(detail)

    def count(self, code: str) -> int:
        return self.counts.get(code, 0)

    def __bool__(self) -> bool:
        return bool(self.counts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            code: {
                "count": count,
                "message": ERRORS.get(code, code),
                "samples": list(self.samples.get(code, [])),
            }
            for code, count in sorted(self.counts.items())
        }
