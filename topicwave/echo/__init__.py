"""Decode, parse and sample ``ros2 topic echo`` output."""

from .decoder import DecodeResult, StreamDecoder
from .extractor import Sample, extract_sample, parse_scalar
from .parser import Record, RecordParser

__all__ = [
    "DecodeResult",
    "Record",
    "RecordParser",
    "Sample",
    "StreamDecoder",
    "extract_sample",
    "parse_scalar",
]
