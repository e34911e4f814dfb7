"""Incremental byte-to-text decoding with UTF-8 / cp932 auto detection.

``ros2`` on Windows consoles may emit the legacy code page instead of
UTF-8 and there is no reliable way to ask which one is in use.  In
``auto`` mode the decoder holds back the first bytes of the stream, tries
them as UTF-8, and falls back to cp932 when that produces replacement
characters.  After the decision every chunk streams straight through the
chosen incremental codec, so multi-byte sequences split across reads are
reassembled rather than mangled.
"""

from __future__ import annotations

import codecs
import enum
import logging
from dataclasses import dataclass

from ..constants import (
    AUTO_DECIDE_THRESHOLD_BYTES,
    ENCODING_AUTO,
    ENCODING_LEGACY,
    ENCODING_UTF8,
    VALID_ENCODINGS,
)

LOGGER = logging.getLogger(__name__)

REPLACEMENT_CHAR = "\ufffd"

_CODEC_NAMES: dict[str, str] = {
    ENCODING_UTF8: "utf-8",
    ENCODING_LEGACY: "cp932",
}


class DecoderChoice(enum.StrEnum):
    UNDECIDED = "undecided"
    UTF8 = ENCODING_UTF8
    LEGACY = ENCODING_LEGACY


@dataclass(slots=True, frozen=True)
class DecodeResult:
    """Decoded text plus whether substitution characters were produced."""

    text: str
    degraded: bool = False


def _incremental(choice: DecoderChoice) -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder(_CODEC_NAMES[choice.value])(errors="replace")


class StreamDecoder:
    """Stateful decoder for one output stream of one subprocess."""

    def __init__(
        self,
        mode: str = ENCODING_AUTO,
        *,
        decide_threshold: int = AUTO_DECIDE_THRESHOLD_BYTES,
    ):
        if mode not in VALID_ENCODINGS:
            raise ValueError(f"Unsupported decoder mode {mode!r}")
        self.mode = mode
        self._decide_threshold = max(1, int(decide_threshold))
        self._pending = bytearray()
        self._decoder: codecs.IncrementalDecoder | None = None
        self._choice = DecoderChoice.UNDECIDED
        self._degraded_logged = False
        if mode != ENCODING_AUTO:
            self._commit(DecoderChoice(mode))

    @property
    def choice(self) -> DecoderChoice:
        return self._choice

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    def write(self, data: bytes) -> DecodeResult:
        if not data:
            return DecodeResult("")
        if self._decoder is not None:
            return self._result(self._decoder.decode(bytes(data), final=False))
        self._pending.extend(data)
        if len(self._pending) < self._decide_threshold:
            return DecodeResult("")
        return self._result(self._decide(final=False))

    def end(self) -> DecodeResult:
        """Flush whatever is buffered; the decoder is reset afterwards."""
        if self._decoder is None:
            if not self._pending:
                return DecodeResult("")
            return self._result(self._decide(final=True))
        text = self._decoder.decode(b"", final=True)
        self._decoder.reset()
        return self._result(text)

    def _commit(self, choice: DecoderChoice) -> None:
        self._choice = choice
        self._decoder = _incremental(choice)

    def _decide(self, *, final: bool) -> str:
        pending = bytes(self._pending)
        self._pending.clear()
        # A sequence cut at the end of the probe is still in flight unless
        # the stream has ended.
        probe = _incremental(DecoderChoice.UTF8).decode(pending, final=final)
        choice = DecoderChoice.LEGACY if REPLACEMENT_CHAR in probe else DecoderChoice.UTF8
        LOGGER.debug("Auto-detected echo output encoding %s after %d bytes", choice, len(pending))
        self._commit(choice)
        assert self._decoder is not None
        return self._decoder.decode(pending, final=final)

    def _result(self, text: str) -> DecodeResult:
        degraded = REPLACEMENT_CHAR in text
        if degraded and not self._degraded_logged:
            self._degraded_logged = True
            LOGGER.debug(
                "Echo output could not be decoded cleanly as %s; substituted characters",
                self._choice,
            )
        return DecodeResult(text, degraded)
