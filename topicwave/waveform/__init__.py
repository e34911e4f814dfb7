"""Bounded per-channel sample history and throttled waveform drawing."""

from .frame import WaveformFrame, build_waveform_frame
from .render import RenderScheduler
from .store import ChannelSampleStore

__all__ = ["ChannelSampleStore", "RenderScheduler", "WaveformFrame", "build_waveform_frame"]
