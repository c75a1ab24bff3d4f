"""
Audit ledger — append-only run history.

Every install/uninstall/start/stop writes one NDJSON line. The ledger
is informational: ``status`` shows the last entry, but the host itself
is always the source of truth for observed state.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    target: str = ""               # installed, running, stopped, absent
    dry_run: bool = False

    # Results
    status: str = ""               # noop, ok, partial, failed, error
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    duration_ms: int = 0

    divergent: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line. Failures are logged
    and never propagate: a read-only state dir must not fail a run.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = Path(path)
        elif state_dir is not None:
            self._path = Path(state_dir) / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> bool:
        """Append an audit entry. Returns whether it was written."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write audit entry to %s: %s", self._path, e)
            return False
        logger.debug("Audit entry written: %s/%s", entry.target, entry.operation_id)
        return True

    def read_all(self) -> list[AuditEntry]:
        """Read all entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def last(self) -> AuditEntry | None:
        entries = self.read_recent(1)
        return entries[0] if entries else None

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
