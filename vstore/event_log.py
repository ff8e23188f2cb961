"""
vstore/event_log.py -- Append-only record of revert attempts.

Every call to ``Reverter.revert`` / ``Reverter.revert_all`` appends one JSON
line describing what was attempted and how it ended.  The log is never
rewritten; it lives outside version control (``runtime/`` by default).

Each record::

    {"timestamp": "...", "operation": "undo", "commit": "<hash>",
     "status": "OK", "modified_files": 3, "new_commit": "<hash>"}
"""

import json
import logging
from pathlib import Path

from vstore.clock import SystemClock
from vstore.utils import safe_append_jsonl

logger = logging.getLogger(__name__)


class RevertEventLog:
    """Appends revert outcomes to a JSONL file.

    Parameters
    ----------
    path : str or pathlib.Path
        The JSONL file.  Created on first write.
    clock : Clock, optional
        Source of record timestamps.
    """

    def __init__(self, path, clock=None):
        self.path = Path(path)
        self.clock = clock or SystemClock()

    def record(self, operation: str, commit_hash: str, status: str, **details) -> dict:
        event = {
            "timestamp": self.clock.now_utc().isoformat(),
            "operation": operation,
            "commit": commit_hash,
            "status": status,
        }
        event.update(details)
        safe_append_jsonl(self.path, event)
        return event

    def read_events(self) -> list[dict]:
        """Return all records, oldest first.  Unparseable lines are skipped."""
        events: list[dict] = []
        if not self.path.exists():
            return events
        with open(self.path, "r", encoding="utf-8") as fh:
            for line_number, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_number, self.path)
        return events
