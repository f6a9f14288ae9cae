"""Filesystem primitives shared by the state blob, the alert ledger and the log.

Everything the radar keeps on disk is rewritten through
:func:`atomic_write_text`, so an interrupted save leaves the previous state
file intact instead of a truncated one.
"""

from __future__ import annotations

from pathlib import Path
import contextlib
import io
import os
import tempfile

__all__ = ["atomic_write_text", "ensure_directory", "read_text_or_none", "tail_lines"]


def ensure_directory(path: Path | str) -> Path:
    """Create ``path`` (and parents) when missing and return it."""

    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def atomic_write_text(
    path: Path | str,
    text: str,
    *,
    encoding: str = "utf-8",
    fsync: bool = False,
) -> None:
    """Replace ``path`` with ``text`` through a temporary sibling file."""

    destination = Path(path)
    ensure_directory(destination.parent)

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding=encoding, delete=False, dir=destination.parent, suffix=".tmp"
        ) as handle:
            tmp_name = handle.name
            handle.write(text)
            handle.flush()
            if fsync:
                os.fsync(handle.fileno())
        os.replace(tmp_name, destination)
    except Exception:
        if tmp_name:
            with contextlib.suppress(FileNotFoundError):
                os.remove(tmp_name)
        raise


def read_text_or_none(path: Path | str, *, encoding: str = "utf-8") -> str | None:
    """Return the file contents, or ``None`` when the file does not exist."""

    try:
        return Path(path).read_text(encoding=encoding)
    except FileNotFoundError:
        return None


def tail_lines(
    path: Path | str,
    limit: int | None = None,
    *,
    encoding: str = "utf-8",
    errors: str = "replace",
    drop_blank: bool = False,
) -> list[str]:
    """Return up to ``limit`` trailing lines of ``path`` without newlines.

    The file is read backwards in blocks so large JSONL logs are not loaded
    in full when only the tail is needed.
    """

    target = Path(path)
    if not target.exists():
        return []
    if limit is not None and limit <= 0:
        return []

    if limit is None:
        with target.open("r", encoding=encoding, errors=errors) as handle:
            lines = handle.read().splitlines()
    else:
        with target.open("rb") as handle:
            handle.seek(0, os.SEEK_END)
            position = handle.tell()
            buffer = bytearray()
            while position > 0 and buffer.count(b"\n") <= limit:
                read_size = min(8192, position)
                position -= read_size
                handle.seek(position)
                buffer[:0] = handle.read(read_size)
        with contextlib.closing(
            io.TextIOWrapper(io.BytesIO(bytes(buffer)), encoding=encoding, errors=errors)
        ) as wrapper:
            lines = wrapper.read().splitlines()[-limit:]

    if drop_blank:
        lines = [line for line in lines if line.strip()]
    return lines
