from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from topicwave.config import WaveformConfig, load_config
from topicwave.constants import DEFAULT_MAX_POINTS, DEFAULT_THROTTLE_MS, MIN_MAX_POINTS


def _write_config(tmp_path: Path, data: object) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.server.port == 8000
    assert cfg.ros2.command == ["ros2"]
    assert cfg.ros2.output_encoding == "auto"
    assert cfg.waveform == WaveformConfig("", DEFAULT_MAX_POINTS, DEFAULT_THROTTLE_MS)
    assert cfg.logging.level == "info"


def test_overrides_are_deep_merged(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        {
            "ros2": {"command": "ros2 --noisy", "participants": {"max_topics": 5}},
            "waveform": {"field_path": " twist.linear.x ", "throttle_ms": 0},
        },
    )
    cfg = load_config(path)
    assert cfg.ros2.command == ["ros2", "--noisy"]
    assert cfg.ros2.participants.max_topics == 5
    assert cfg.ros2.participants.enabled is True
    assert cfg.waveform.field_path == "twist.linear.x"
    assert cfg.waveform.throttle_ms == 0
    assert cfg.waveform.max_points == DEFAULT_MAX_POINTS
    assert cfg.config_path == path.resolve()


def test_waveform_values_are_clamped(tmp_path: Path, caplog) -> None:
    path = _write_config(tmp_path, {"waveform": {"max_points": 10, "throttle_ms": -5}})
    cfg = load_config(path)
    assert cfg.waveform.max_points == MIN_MAX_POINTS
    assert cfg.waveform.throttle_ms == 0
    assert "waveform.max_points" in caplog.text


def test_unknown_encoding_falls_back_to_auto(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"ros2": {"output_encoding": "latin1"}})
    assert load_config(path).ros2.output_encoding == "auto"


def test_env_values_are_stringified(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"ros2": {"env": {"ROS_DOMAIN_ID": 7}}})
    assert load_config(path).ros2.env == {"ROS_DOMAIN_ID": "7"}


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    path = _write_config(tmp_path, ["not", "a", "dict"])
    with pytest.raises(ValueError, match="YAML object"):
        load_config(path)


def test_invalid_port_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"server": {"port": 70000}})
    with pytest.raises(ValueError, match="server.port"):
        load_config(path)


def test_empty_command_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"ros2": {"command": []}})
    with pytest.raises(ValueError, match="ros2.command"):
        load_config(path)


def test_unknown_log_level_defaults_to_info(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"logging": {"level": "LOUD"}})
    assert load_config(path).logging.level == "info"


def test_waveform_config_is_immutable() -> None:
    cfg = WaveformConfig()
    with pytest.raises(AttributeError):
        cfg.max_points = 5  # type: ignore[misc]
