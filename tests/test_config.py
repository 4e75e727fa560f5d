#!/usr/bin/env python3

"""
Unit tests for the YAML settings layer.
"""

# Standard Library
import os
import sys

# PIP3 modules
import pytest
import yaml

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from detailtracklib.core import config

#============================================

def _settings_with(section_name: str, overrides: dict) -> dict:
	data = config.default_config()
	data["settings"][section_name].update(overrides)
	return config.build_settings(data, "<test>")

#============================================

def test_default_settings_values() -> None:
	"""Code defaults normalize without changes."""
	settings = config.default_settings()
	assert settings["locate"]["shape_radius"] == 15
	assert settings["locate"]["move_radius"] == 70
	assert settings["tune"]["max_offset"] == 4
	assert settings["perspective"]["max_alternates"] == 300
	assert settings["probe"]["max_attempts"] == 309
	assert settings["tracking"]["reference"] == "first"
	return

#============================================

def test_section_lookup() -> None:
	"""A section is found in full settings or passed through when bare."""
	locate_defaults = config.section(None, "locate")
	assert locate_defaults["finish_radius"] == 2
	settings = config.default_settings()
	assert config.section(settings, "tune") is settings["tune"]
	assert config.section(settings["tune"], "tune") is settings["tune"]
	return

#============================================

def test_partial_section_is_merged_with_defaults() -> None:
	"""Keys missing from the file keep their default values."""
	data = {config.CONFIG_HEADER_KEY: config.CONFIG_HEADER_VALUE, "settings": {"locate": {"move_radius": 8}}}
	settings = config.build_settings(data, "<test>")
	assert settings["locate"]["move_radius"] == 8
	assert settings["locate"]["shape_radius"] == 15
	assert settings["select"]["num_points"] == 4
	return

#============================================

def test_string_values_are_coerced() -> None:
	"""Quoted numbers and yes/no strings are accepted."""
	settings = _settings_with("locate", {"shape_radius": "12", "colordiff_threshold": "0.05"})
	assert settings["locate"]["shape_radius"] == 12
	assert settings["locate"]["colordiff_threshold"] == 0.05
	settings = _settings_with("probe", {"enabled": "no"})
	assert settings["probe"]["enabled"] is False
	return

#============================================

@pytest.mark.parametrize("section_name, overrides", [
	("locate", {"shape_radius": 0}),
	("locate", {"metric": "euclid"}),
	("locate", {"move_radius": True}),
	("tune", {"array_size": 36}),
	("tune", {"max_offset": 5}),
	("select", {"num_points": 5}),
	("perspective", {"precision_threshold": 0.1}),
	("probe", {"required_ratio": 0}),
	("tracking", {"reference": "last"}),
	("tracking", {"report_format": "xml"}),
])
def test_out_of_range_values_raise(section_name: str, overrides: dict) -> None:
	"""Invalid values are rejected with a RuntimeError."""
	with pytest.raises(RuntimeError):
		_settings_with(section_name, overrides)
	return

#============================================

def test_write_and_load_round_trip(tmp_path) -> None:
	"""A written default config loads back unchanged."""
	config_path = str(tmp_path / "nested" / "detailtrack_config.yml")
	config.write_config_file(config_path, config.default_config())
	data = config.load_config(config_path)
	assert data == config.default_config()
	assert config.build_settings(data, config_path) == config.default_settings()
	return

#============================================

def test_load_requires_header(tmp_path) -> None:
	"""Files without the header key are refused."""
	config_path = tmp_path / "other.yml"
	config_path.write_text(yaml.safe_dump({"settings": {}}), encoding="utf-8")
	with pytest.raises(RuntimeError):
		config.load_config(str(config_path))
	config_path.write_text("- just\n- a list\n", encoding="utf-8")
	with pytest.raises(RuntimeError):
		config.load_config(str(config_path))
	return
