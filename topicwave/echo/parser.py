from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from ..constants import RECORD_DELIMITER

_STAMP_PREFIXES: tuple[str, ...] = ("header.stamp", "stamp")


@dataclass(slots=True)
class Record:
    """One echoed message flattened to ``dotted.path -> scalar text``."""

    fields: dict[str, str] = field(default_factory=dict)

    def get(self, path: str) -> str | None:
        return self.fields.get(path)

    def stamp_parts(self) -> tuple[str, str] | None:
        """Return raw ``(sec, nanosec)`` of the first stamp present."""
        for prefix in _STAMP_PREFIXES:
            sec = self.fields.get(f"{prefix}.sec")
            nanosec = self.fields.get(f"{prefix}.nanosec")
            if sec is not None and nanosec is not None:
                return sec, nanosec
        return None


def build_field_map(lines: Iterable[str]) -> dict[str, str]:
    """Convert indented ``key: value`` lines of one record to a path map."""
    fields: dict[str, str] = {}
    stack: list[tuple[int, str]] = []
    for raw in lines:
        trimmed = raw.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if trimmed == "-" or trimmed.startswith("- "):
            continue
        key, sep, value = trimmed.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        indent = len(raw) - len(raw.lstrip())
        while stack and indent <= stack[-1][0]:
            stack.pop()
        value = value.strip()
        if not value:
            stack.append((indent, key))
            continue
        path = ".".join([*(name for _, name in stack), key])
        fields[path] = value
    return fields


class RecordParser:
    """Split a decoded text stream into :class:`Record` objects.

    State survives across :meth:`feed` calls so lines and records may be
    split at arbitrary chunk boundaries.
    """

    def __init__(self) -> None:
        self._fragment = ""
        self._lines: list[str] = []

    def feed(self, text: str) -> list[Record]:
        if not text:
            return []
        parts = (self._fragment + text).split("\n")
        self._fragment = parts.pop()
        return self._consume(parts)

    def flush(self) -> list[Record]:
        """Treat the trailing fragment as a complete line at end of stream."""
        if not self._fragment:
            return []
        fragment, self._fragment = self._fragment, ""
        return self._consume([fragment])

    def _consume(self, lines: list[str]) -> list[Record]:
        records: list[Record] = []
        for line in lines:
            if line.strip() == RECORD_DELIMITER:
                records.append(Record(build_field_map(self._lines)))
                self._lines = []
            else:
                self._lines.append(line.rstrip("\r"))
        return records

    def reset(self) -> None:
        self._fragment = ""
        self._lines = []

    @property
    def has_partial(self) -> bool:
        return bool(self._fragment or self._lines)
