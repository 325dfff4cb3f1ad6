"""Per-record migration state and the transitions allowed between states."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class MigrationStatus(str, Enum):
    """Status of a legacy record during migration."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    REWRITING = "rewriting"
    PERSISTED = "persisted"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[MigrationStatus] = frozenset(
    {MigrationStatus.PERSISTED, MigrationStatus.FAILED, MigrationStatus.SKIPPED}
)

_TRANSITIONS: Dict[MigrationStatus, FrozenSet[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset(
        {MigrationStatus.DOWNLOADING, MigrationStatus.SKIPPED, MigrationStatus.FAILED}
    ),
    MigrationStatus.DOWNLOADING: frozenset({MigrationStatus.UPLOADING, MigrationStatus.FAILED}),
    MigrationStatus.UPLOADING: frozenset({MigrationStatus.REWRITING, MigrationStatus.FAILED}),
    MigrationStatus.REWRITING: frozenset({MigrationStatus.PERSISTED, MigrationStatus.FAILED}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a record is moved along an edge the state machine lacks."""


@dataclass
class MigrationState:
    """Tracks one legacy record through the pipeline.

    The orchestrator is the only writer.  ``history`` keeps the visited
    states in order, which the tests and the JSON report both use.
    """
    source_id: str
    kind: str = "post"
    destination_id: Optional[str] = None
    status: MigrationStatus = MigrationStatus.PENDING
    last_error: Optional[str] = None
    history: List[Tuple[MigrationStatus, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.status, datetime.now(timezone.utc)))

    def advance(self, status: MigrationStatus) -> None:
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidTransitionError(
                f"{self.source_id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.history.append((status, datetime.now(timezone.utc)))

    def fail(self, reason: str) -> None:
        self.advance(MigrationStatus.FAILED)
        self.last_error = reason

    def skip(self, reason: str) -> None:
        self.advance(MigrationStatus.SKIPPED)
        self.last_error = reason

    @property
    def visited(self) -> List[MigrationStatus]:
        return [status for status, _ in self.history]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_id": self.source_id,
            "kind": self.kind,
            "destination_id": self.destination_id,
            "status": self.status.value,
            "last_error": self.last_error,
        }
