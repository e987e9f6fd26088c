"""Fallback audit sink: one JSON object per line in a local file.

Used only when the primary store rejects a write. Records here are
complete and can be replayed into the primary store once it recovers.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from pathlib import Path

from metagate.audit.types import AuditRecord
from metagate.errors import AuditPersistenceFailure

logger = logging.getLogger(__name__)


class JsonlFallbackSink:
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, record: AuditRecord) -> None:
        try:
            line = record.to_json()
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise AuditPersistenceFailure(
                f"Failed to write audit record {record.id} to {self.path}: {exc}"
            ) from exc

    def records(self) -> Iterator[AuditRecord]:
        """Read back every record in write order."""
        if not self.path.exists():
            return
        with self.path.open(encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditRecord.from_dict(json.loads(line))
                except (ValueError, KeyError) as exc:
                    logger.error("Skipping unreadable fallback audit line %d: %s", line_no, exc)

    def _rewrite(self, records: list[AuditRecord]) -> None:
        self.path.write_text("".join(r.to_json() + "\n" for r in records), encoding="utf-8")

    def replay(self, target) -> int:
        """Write every fallback record into ``target`` and empty the file.

        Records the target already holds (``target.contains(id)``) are
        skipped. On failure the file is rewritten with only the records
        not yet replayed and the error propagates, so a later replay
        resumes where this one stopped.

        Returns:
            Number of records written to the target.
        """
        contains = getattr(target, "contains", None)
        written = 0
        with self._lock:
            records = list(self.records())
            for index, record in enumerate(records):
                if contains is not None and contains(record.id):
                    continue
                try:
                    target.write(record)
                except Exception:
                    self._rewrite(records[index:])
                    logger.error(
                        "Fallback replay stopped after %d records; %d left in %s",
                        written,
                        len(records) - index,
                        self.path,
                    )
                    raise
                written += 1
            if records:
                self.path.write_text("", encoding="utf-8")
        logger.info("Replayed %d fallback audit records", written)
        return written
