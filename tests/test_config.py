from __future__ import annotations

from pathlib import Path

import pytest

from cwsim.config import AppConfig, get_inputs, load_config, validate_inputs
from cwsim.errors import InvalidConfiguration


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def _valid_config() -> AppConfig:
    cfg = AppConfig()
    cfg.station.callsign = "ea3ipx"
    cfg.station.name = "joe"
    cfg.station.state = "ca"
    return cfg


def test_missing_file_writes_defaults(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    cfg = load_config(cfg_path)
    assert cfg_path.exists()
    assert cfg.session.mode == "single"
    assert load_config(cfg_path).callers.max_stations == cfg.callers.max_stations


def test_load_config_sorts_ranges_and_clamps(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(
        cfg_path,
        """
callers:
  wpm_min: 35
  wpm_max: 20
  tone_hz_min: 900.0
  tone_hz_max: 500.0
  max_stations: 0
  qsb_percentage: 150
session:
  mode: CWT
  qrn: deafening
  cut_digits: ["0", "4", "9"]
unknown_section:
  foo: 1
""".strip(),
    )

    cfg = load_config(cfg_path)

    assert (cfg.callers.wpm_min, cfg.callers.wpm_max) == (20, 35)
    assert (cfg.callers.tone_hz_min, cfg.callers.tone_hz_max) == (500.0, 900.0)
    assert cfg.callers.max_stations == 1
    assert cfg.callers.qsb_percentage == 100
    assert cfg.session.mode == "cwt"
    assert cfg.session.qrn == "moderate"
    assert cfg.session.cut_digits == ["0", "9"]


def test_unknown_mode_falls_back_to_single(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    _write_yaml(cfg_path, "session:\n  mode: fieldday\n")
    assert load_config(cfg_path).session.mode == "single"


def test_validate_inputs_normalizes_your_station():
    inputs = validate_inputs(_valid_config())
    assert inputs.your.callsign == "EA3IPX"
    assert inputs.your.name == "JOE"
    assert inputs.cut_numbers == {}


def test_cut_numbers_only_when_enabled():
    cfg = _valid_config()
    cfg.session.enable_cut_numbers = True
    cfg.session.cut_digits = ["0", "9"]
    assert validate_inputs(cfg).cut_numbers == {"0": "T", "9": "N"}


@pytest.mark.parametrize(
    "field,value",
    [
        ("callsign", ""),
        ("callsign", "NOTACALL"),
        ("wpm", 2),
        ("wpm", "fast"),
        ("sidetone", 50.0),
        ("volume", 1.5),
    ],
)
def test_invalid_station_settings_are_rejected(field, value):
    cfg = _valid_config()
    setattr(cfg.station, field, value)
    with pytest.raises(InvalidConfiguration):
        validate_inputs(cfg)
    assert get_inputs(cfg) is None
