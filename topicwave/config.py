from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_MAX_POINTS,
    DEFAULT_THROTTLE_MS,
    ENCODING_AUTO,
    MIN_MAX_POINTS,
    VALID_ENCODINGS,
)

SERVER_DIR = Path(__file__).resolve().parents[1]
"""Root of the project tree (holds ``config.yaml`` by default)."""

LOGGER = logging.getLogger(__name__)

VALID_LOG_LEVELS: set[str] = {"critical", "error", "warning", "info", "debug"}

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8000},
    "ros2": {
        "command": ["ros2"],
        "output_encoding": ENCODING_AUTO,
        "env": {},
        "list_timeout_s": 5.0,
        "participants": {
            "enabled": True,
            "max_topics": 50,
            "timeout_s": 4.0,
        },
    },
    "waveform": {
        "field_path": "",
        "max_points": DEFAULT_MAX_POINTS,
        "throttle_ms": DEFAULT_THROTTLE_MS,
    },
    "logging": {"level": "info"},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass(slots=True, frozen=True)
class WaveformConfig:
    """Immutable snapshot of the waveform view settings.

    ``field_path`` selects the plotted field (empty means auto-select),
    ``max_points`` caps every channel buffer and ``throttle_ms`` is the
    minimum interval between redraws.
    """

    field_path: str = ""
    max_points: int = DEFAULT_MAX_POINTS
    throttle_ms: int = DEFAULT_THROTTLE_MS

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_path", str(self.field_path or "").strip())
        if not isinstance(self.max_points, int) or self.max_points < MIN_MAX_POINTS:
            LOGGER.warning(
                "waveform.max_points=%r is below minimum %s, clamped to %s",
                self.max_points,
                MIN_MAX_POINTS,
                MIN_MAX_POINTS,
            )
            object.__setattr__(self, "max_points", MIN_MAX_POINTS)
        if not isinstance(self.throttle_ms, int) or self.throttle_ms < 0:
            LOGGER.warning("waveform.throttle_ms=%r is negative, clamped to 0", self.throttle_ms)
            object.__setattr__(self, "throttle_ms", 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_path": self.field_path,
            "max_points": self.max_points,
            "throttle_ms": self.throttle_ms,
        }


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"ServerConfig.port must be 1-65535, got {self.port!r}")


@dataclass(slots=True)
class ParticipantsConfig:
    enabled: bool
    max_topics: int
    timeout_s: float

    def __post_init__(self) -> None:
        if self.max_topics < 0:
            LOGGER.warning(
                "ros2.participants.max_topics=%s is negative, clamped to 0", self.max_topics
            )
            object.__setattr__(self, "max_topics", 0)
        if self.timeout_s <= 0:
            object.__setattr__(self, "timeout_s", 4.0)


@dataclass(slots=True)
class Ros2Config:
    command: list[str]
    output_encoding: str
    env: dict[str, str]
    list_timeout_s: float
    participants: ParticipantsConfig

    def __post_init__(self) -> None:
        if not self.command or not all(isinstance(part, str) and part for part in self.command):
            raise ValueError(
                f"ros2.command must be a non-empty list of strings, got {self.command!r}"
            )
        if self.output_encoding not in VALID_ENCODINGS:
            LOGGER.warning(
                "ros2.output_encoding=%r is not one of %s, using %s",
                self.output_encoding,
                sorted(VALID_ENCODINGS),
                ENCODING_AUTO,
            )
            object.__setattr__(self, "output_encoding", ENCODING_AUTO)
        if self.list_timeout_s <= 0:
            object.__setattr__(self, "list_timeout_s", 5.0)


@dataclass(slots=True)
class LoggingConfig:
    level: str

    def __post_init__(self) -> None:
        level = str(self.level).lower()
        if level not in VALID_LOG_LEVELS:
            LOGGER.warning("logging.level=%r is not recognised, using info", self.level)
            level = "info"
        object.__setattr__(self, "level", level)


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    ros2: Ros2Config
    waveform: WaveformConfig
    logging: LoggingConfig
    config_path: Path = field(default_factory=lambda: SERVER_DIR / "config.yaml")


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def _command_list(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return raw.split()
    if isinstance(raw, list):
        return [str(part) for part in raw]
    raise ValueError(f"ros2.command must be a string or a list, got {raw!r}")


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (SERVER_DIR / "config.yaml")
    path = path.resolve()
    override = _read_config_file(path)
    merged = _deep_merge(DEFAULT_CONFIG, override)

    server_port = int(merged["server"]["port"])
    if not 1 <= server_port <= 65535:
        raise ValueError(f"server.port must be 1-65535, got {server_port}")

    ros2_cfg = merged["ros2"]
    participants_cfg = ros2_cfg.get("participants", {})
    participants_defaults = DEFAULT_CONFIG["ros2"]["participants"]
    waveform_cfg = merged["waveform"]
    app_config = AppConfig(
        server=ServerConfig(
            host=str(merged["server"]["host"]),
            port=server_port,
        ),
        ros2=Ros2Config(
            command=_command_list(ros2_cfg["command"]),
            output_encoding=str(ros2_cfg.get("output_encoding", ENCODING_AUTO)).lower(),
            env={str(k): str(v) for k, v in (ros2_cfg.get("env") or {}).items()},
            list_timeout_s=float(ros2_cfg.get("list_timeout_s", 5.0)),
            participants=ParticipantsConfig(
                enabled=bool(participants_cfg.get("enabled", participants_defaults["enabled"])),
                max_topics=int(
                    participants_cfg.get("max_topics", participants_defaults["max_topics"])
                ),
                timeout_s=float(
                    participants_cfg.get("timeout_s", participants_defaults["timeout_s"])
                ),
            ),
        ),
        waveform=WaveformConfig(
            field_path=str(waveform_cfg.get("field_path") or ""),
            max_points=int(waveform_cfg.get("max_points", DEFAULT_MAX_POINTS)),
            throttle_ms=int(waveform_cfg.get("throttle_ms", DEFAULT_THROTTLE_MS)),
        ),  # NOTE: WaveformConfig.__post_init__ clamps max_points and throttle_ms
        logging=LoggingConfig(level=str(merged["logging"].get("level", "info"))),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s command=%s encoding=%s waveform=%s",
        path,
        " ".join(app_config.ros2.command),
        app_config.ros2.output_encoding,
        app_config.waveform.to_dict(),
    )
    return app_config
