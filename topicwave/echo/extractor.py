from __future__ import annotations

import math
import re
from dataclasses import dataclass

from ..constants import AUTO_FIELD_PATH
from .parser import Record

_INT_RE = re.compile(r"^[+-]?\d+$")


@dataclass(slots=True, frozen=True)
class Sample:
    t: float
    v: float

    def to_dict(self) -> dict[str, float]:
        return {"t": self.t, "v": self.v}


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def parse_scalar(raw: str | None) -> float | None:
    """Interpret echoed scalar text as a finite number, or return ``None``."""
    if raw is None:
        return None
    text = raw.strip()
    if text.endswith(","):
        text = text[:-1].rstrip()
    text = _strip_quotes(text).strip()
    lowered = text.lower()
    if lowered == "true":
        return 1.0
    if lowered == "false":
        return 0.0
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _parse_int(raw: str) -> int | None:
    text = raw.strip()
    if not _INT_RE.match(text):
        return None
    try:
        return int(text)
    except ValueError:
        # exceeds the interpreter's int digit limit
        return None


def record_timestamp(record: Record) -> float | None:
    parts = record.stamp_parts()
    if parts is None:
        return None
    sec, nanosec = (_parse_int(part) for part in parts)
    if sec is None or nanosec is None:
        return None
    try:
        t = sec + nanosec * 1e-9
    except OverflowError:
        return None
    return t if math.isfinite(t) else None


def select_value(record: Record, field_path: str) -> float | None:
    if field_path:
        return parse_scalar(record.get(field_path))
    preferred = parse_scalar(record.get(AUTO_FIELD_PATH))
    if preferred is not None:
        return preferred
    for raw in record.fields.values():
        value = parse_scalar(raw)
        if value is not None:
            return value
    return None


def extract_sample(record: Record, field_path: str, received_at: float) -> Sample | None:
    """Pick one sample from *record*.

    With an empty *field_path* the ``data`` field wins, otherwise the first
    numeric field in document order.  The message stamp is used as time
    when present, else *received_at*.
    """
    value = select_value(record, field_path.strip())
    if value is None:
        return None
    t = record_timestamp(record)
    return Sample(t=received_at if t is None else t, v=value)
