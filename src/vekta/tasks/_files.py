from __future__ import annotations

from pathlib import Path

from vekta.errors import ResourceUnreadable


def read_text_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceUnreadable(
            f"failed to read file {path}: {e}", hint="expected an existing UTF-8 text file"
        ) from e


def read_line_range(path: str, start_line: int, end_line: int) -> str:
    """Lines ``[start_line, end_line)`` of a text file joined with newlines."""
    if start_line < 0 or end_line < start_line:
        raise ResourceUnreadable(f"invalid line range {start_line}:{end_line} for {path}")
    lines = read_text_file(path).splitlines()
    return "\n".join(lines[start_line:end_line])


def file_name(path: str) -> str:
    return Path(path).name


def preview(text: str, limit: int) -> str:
    return text[:limit] + "..."
