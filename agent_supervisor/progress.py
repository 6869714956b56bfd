"""Incremental reader for agent progress files (JSONL)."""

import json
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ProgressReader:
    """Reads entries appended to a JSONL progress file since the last read.

    The file may not exist yet, may end in a partially written line, and may
    contain lines that are not JSON objects. Missing files read as empty,
    partial lines are left for the next read, and bad lines are skipped.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._offset = 0

    def read_new_entries(self) -> list[dict[str, Any]]:
        """Return complete entries written since the previous call."""
        try:
            with self.path.open("rb") as f:
                f.seek(self._offset)
                chunk = f.read()
        except FileNotFoundError:
            return []

        if not chunk:
            return []

        # Only consume up to the last newline; the rest is still being written
        end = chunk.rfind(b"\n")
        if end == -1:
            return []
        self._offset += end + 1

        entries: list[dict[str, Any]] = []
        for raw_line in chunk[:end].splitlines():
            line = raw_line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.debug("Skipping malformed progress line", path=str(self.path))
                continue
            if isinstance(entry, dict):
                entries.append(entry)
        return entries
