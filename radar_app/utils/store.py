from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

from .file_io import atomic_write_text, ensure_directory, tail_lines


class JLStore:
    """Append-only JSONL ledger capped at ``max_lines`` records.

    Used for the alert history: every dispatched alert is appended once and
    the operational surface reads the newest records back.
    """

    def __init__(self, path: Path, max_lines: int = 500, *, fsync: bool = False, encoding: str = "utf-8"):
        self.path = Path(path)
        self.max_lines = max_lines
        self.encoding = encoding
        self.fsync = fsync
        self._lock = threading.Lock()
        ensure_directory(self.path.parent)
        self._line_count = self._count_lines() if self.path.exists() else 0

    # ------------------------------------------------------------------
    # public API
    def append(self, record: Mapping[str, Any]) -> None:
        self.append_many([record])

    def append_many(self, records: Iterable[Mapping[str, Any]]) -> None:
        lines = [json.dumps(dict(record), ensure_ascii=False, default=str) for record in records]
        if not lines:
            return
        with self._lock:
            with self.path.open("a", encoding=self.encoding) as handle:
                handle.write("\n".join(lines) + "\n")
                if self.fsync:
                    handle.flush()
                    os.fsync(handle.fileno())
            self._line_count += len(lines)
            if self.max_lines > 0 and self._line_count > self.max_lines:
                self._compact()

    def read_tail(self, n: int = 100, *, kind: str | None = None) -> list[dict[str, Any]]:
        """Return up to ``n`` newest records, oldest first.

        Lines that are not valid JSON (a torn write from a killed process)
        are skipped. ``kind`` filters on the record's ``kind`` field.
        """

        if n <= 0:
            return []
        with self._lock:
            lines = tail_lines(self.path, None if kind else n, encoding=self.encoding, drop_blank=True)

        records: list[dict[str, Any]] = []
        for line in lines:
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(parsed, dict):
                continue
            if kind and parsed.get("kind") != kind:
                continue
            records.append(parsed)
        return records[-n:]

    def clear(self) -> None:
        with self._lock:
            atomic_write_text(self.path, "", encoding=self.encoding, fsync=self.fsync)
            self._line_count = 0

    def __len__(self) -> int:
        return self._line_count

    # ------------------------------------------------------------------
    # private helpers
    def _count_lines(self) -> int:
        with self.path.open("rb") as handle:
            return sum(1 for line in handle if line.strip())

    def _compact(self) -> None:
        keep = tail_lines(self.path, self.max_lines, encoding=self.encoding, drop_blank=True)
        text = "\n".join(keep) + ("\n" if keep else "")
        atomic_write_text(self.path, text, encoding=self.encoding, fsync=self.fsync)
        self._line_count = len(keep)
