from __future__ import annotations

import logging
import math
from typing import Any

import numpy as np

from ..echo.extractor import Sample
from .buffers import SampleBuffer

LOGGER = logging.getLogger(__name__)


class ChannelSampleStore:
    """Bounded FIFO sample history per channel.

    Buffers outlive the subscription that filled them so the last known
    waveform stays visible; only :meth:`forget` destroys one.
    """

    def __init__(self, capacity: int):
        self._capacity = max(1, int(capacity))
        self._buffers: dict[str, SampleBuffer] = {}
        self._rejected_non_finite = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def _get_or_create(self, channel: str) -> SampleBuffer:
        buf = self._buffers.get(channel)
        if buf is None:
            buf = SampleBuffer.empty(self._capacity)
            self._buffers[channel] = buf
        return buf

    def append(self, channel: str, sample: Sample) -> bool:
        if not (math.isfinite(sample.t) and math.isfinite(sample.v)):
            self._rejected_non_finite += 1
            return False
        self._get_or_create(channel).append(sample.t, sample.v)
        return True

    def get(self, channel: str) -> list[Sample]:
        buf = self._buffers.get(channel)
        if buf is None:
            return []
        latest = buf.latest()
        return [Sample(t=float(t), v=float(v)) for t, v in zip(latest[0], latest[1], strict=True)]

    def snapshot(self) -> dict[str, np.ndarray]:
        return {channel: buf.latest() for channel, buf in self._buffers.items()}

    def set_capacity(self, capacity: int) -> None:
        capacity = max(1, int(capacity))
        if capacity == self._capacity:
            return
        LOGGER.info(
            "Resizing %d channel buffers from %d to %d samples",
            len(self._buffers),
            self._capacity,
            capacity,
        )
        self._capacity = capacity
        for buf in self._buffers.values():
            buf.resize(capacity)

    def forget(self, channel: str) -> bool:
        return self._buffers.pop(channel, None) is not None

    def channels(self) -> list[str]:
        return list(self._buffers)

    def __contains__(self, channel: object) -> bool:
        return channel in self._buffers

    def stats(self) -> dict[str, Any]:
        return {
            "capacity": self._capacity,
            "channels": len(self._buffers),
            "samples": sum(buf.count for buf in self._buffers.values()),
            "appended_total": sum(buf.total_appended for buf in self._buffers.values()),
            "rejected_non_finite": self._rejected_non_finite,
        }
