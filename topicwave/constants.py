"""Shared constants for the echo pipeline and waveform view."""

from __future__ import annotations

from typing import Final

RECORD_DELIMITER: Final[str] = "---"
"""Line that terminates one echoed message record."""

AUTO_DECIDE_THRESHOLD_BYTES: Final[int] = 1024
"""Pending bytes collected before auto encoding detection commits."""

INTERRUPT_TIMEOUT_S: Final[float] = 1.5
"""Grace period after SIGINT before escalating to SIGKILL."""

KILL_TIMEOUT_S: Final[float] = 1.0
"""Grace period after SIGKILL before reporting an unconfirmed stop."""

MIN_MAX_POINTS: Final[int] = 100
DEFAULT_MAX_POINTS: Final[int] = 2000
DEFAULT_THROTTLE_MS: Final[int] = 50

AUTO_FIELD_PATH: Final[str] = "data"
"""Preferred field when no explicit field path is configured."""

ENCODING_AUTO: Final[str] = "auto"
ENCODING_UTF8: Final[str] = "utf8"
ENCODING_LEGACY: Final[str] = "cp932"
VALID_ENCODINGS: Final[frozenset[str]] = frozenset({ENCODING_AUTO, ENCODING_UTF8, ENCODING_LEGACY})

ROS2_NOT_FOUND_HINT: Final[str] = (
    "ros2 not found. Configure ros2.command in config.yaml or source your ROS 2 setup "
    "before starting the server."
)
