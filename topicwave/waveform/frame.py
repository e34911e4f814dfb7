"""Render-ready waveform frame built from the channel buffers.

The frame carries everything a chart needs except pixels: per-series
samples plus coordinates normalised to ``[0, 1]``, the shared value and
time ranges, the empty-state reason and the caption line.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np

EMPTY_NO_CHANNELS = "no_channels"
EMPTY_WAITING = "waiting_for_samples"

_EMPTY_CAPTIONS: dict[str, str] = {
    EMPTY_NO_CHANNELS: "Waveform: select (echo) a topic",
    EMPTY_WAITING: "Waveform: waiting for samples",
}

ACTIVE_ALPHA = 1.0
INACTIVE_ALPHA = 0.35


@dataclass(slots=True)
class WaveformSeries:
    channel: str
    active: bool
    t: list[float]
    v: list[float]
    x: list[float]
    y: list[float]

    @property
    def alpha(self) -> float:
        return ACTIVE_ALPHA if self.active else INACTIVE_ALPHA

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "active": self.active,
            "alpha": self.alpha,
            "t": self.t,
            "v": self.v,
            "x": self.x,
            "y": self.y,
        }


@dataclass(slots=True)
class WaveformFrame:
    channels: list[str] = field(default_factory=list)
    series: list[WaveformSeries] = field(default_factory=list)
    min_v: float | None = None
    max_v: float | None = None
    min_t: float | None = None
    max_t: float | None = None
    has_time_range: bool = False
    empty: str | None = None
    caption: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "channels": self.channels,
            "series": [series.to_dict() for series in self.series],
            "min_v": self.min_v,
            "max_v": self.max_v,
            "min_t": self.min_t,
            "max_t": self.max_t,
            "has_time_range": self.has_time_range,
            "empty": self.empty,
            "caption": self.caption,
        }


def _ordered_channels(snapshot: Mapping[str, np.ndarray], active: Iterable[str]) -> list[str]:
    seen = dict.fromkeys(snapshot)
    for channel in active:
        seen.setdefault(channel, None)
    return list(seen)


def build_waveform_frame(
    snapshot: Mapping[str, np.ndarray],
    active: Iterable[str],
    field_path: str = "",
) -> WaveformFrame:
    """Build a frame from ``{channel: array(2, n)}`` ordered oldest first."""
    active = list(active)
    active_set = set(active)
    channels = _ordered_channels(snapshot, active)
    if not channels:
        return WaveformFrame(empty=EMPTY_NO_CHANNELS, caption=_EMPTY_CAPTIONS[EMPTY_NO_CHANNELS])
    drawable = [c for c in channels if c in snapshot and snapshot[c].shape[1] >= 2]
    if not drawable:
        return WaveformFrame(
            channels=channels,
            empty=EMPTY_WAITING,
            caption=_EMPTY_CAPTIONS[EMPTY_WAITING],
        )

    populated = [snapshot[c] for c in channels if c in snapshot and snapshot[c].shape[1]]
    joined = np.concatenate(populated, axis=1)
    min_t, max_t = float(joined[0].min()), float(joined[0].max())
    min_v, max_v = float(joined[1].min()), float(joined[1].max())
    if min_v == max_v:
        min_v -= 1.0
        max_v += 1.0
    has_time_range = max_t > min_t
    time_range = (max_t - min_t) if has_time_range else 1.0
    value_range = max_v - min_v

    series: list[WaveformSeries] = []
    for channel in drawable:
        arr = snapshot[channel]
        n = arr.shape[1]
        if has_time_range:
            x = (arr[0] - min_t) / time_range
        else:
            x = np.arange(n, dtype=np.float64) / (n - 1)
        y = (arr[1] - min_v) / value_range
        series.append(
            WaveformSeries(
                channel=channel,
                active=channel in active_set,
                t=arr[0].tolist(),
                v=arr[1].tolist(),
                x=x.tolist(),
                y=y.tolist(),
            )
        )

    t_label = f"dt={max_t - min_t:.3f}s" if has_time_range else "dt=(n/a)"
    caption = (
        f"{', '.join(channels)}  {field_path or '(auto)'}  {t_label}  "
        f"min={min_v:.3f} max={max_v:.3f}"
    )
    return WaveformFrame(
        channels=channels,
        series=series,
        min_v=min_v,
        max_v=max_v,
        min_t=min_t,
        max_t=max_t,
        has_time_range=has_time_range,
        caption=caption,
    )
