#!/usr/bin/env python3

"""
YAML settings for the detail tracking engine.

Every empirically tuned constant of the engine lives here so it can be
recalibrated per footage without code changes.
"""

# Standard Library
import copy
import os

# PIP3 modules
import yaml

#============================================

CONFIG_HEADER_KEY = "detailtrack"
CONFIG_HEADER_VALUE = 1

METRIC_NAMES = ("simple_rgb", "hsv", "hsv_max", "ciede2000", "cie94")

#============================================

def default_config() -> dict:
	"""
	Build the default config dictionary.

	Returns:
		dict: Default config.
	"""
	return {
		CONFIG_HEADER_KEY: CONFIG_HEADER_VALUE,
		"settings": {
			"locate": {
				"shape_radius": 15,
				"move_radius": 70,
				"colordiff_threshold": 0.08,
				"good_match_factor": 1.05,
				"opacity_level": 50,
				"required_area_ratio": 0.30,
				"almost_full_ratio": 0.90,
				"finish_radius": 2,
				"metric": "simple_rgb",
			},
			"tune": {
				"enabled": True,
				"array_size": 37,
				"border": 4,
				"max_offset": 4,
				"q_factor": 1.4,
				"strong_rel_diff": 0.1,
				"nearly_same_factor": 1.02,
				"max_candidates": 30,
			},
			"select": {
				"num_points": 4,
				"min_move_tolerance": 5,
				"move_tolerance_divisor": 8,
				"average_loops": 4,
				"same_quality_margin": 0.003,
			},
			"perspective": {
				"precision": 0.2,
				"precision_threshold": 1.4,
				"max_iterations": 500,
				"step_fraction": 0.125,
				"sanity_bound": 5.0,
				"max_alternates": 300,
			},
			"probe": {
				"enabled": True,
				"max_attempts": 309,
				"min_mask_pixels": 10,
				"required_ratio": 0.5,
				"required_cap": 500,
			},
			"tracking": {
				"reference": "first",
				"report_format": "yaml",
			},
		},
	}

#============================================

def default_settings() -> dict:
	"""
	Normalized settings built from the code defaults.

	Returns:
		dict: Settings mapping (without the header).
	"""
	return build_settings(default_config(), "<code defaults>")

#============================================

def section(settings: dict | None, name: str) -> dict:
	"""
	Fetch one settings section, falling back to the defaults.

	Args:
		settings: Normalized settings or None.
		name: Section name such as "locate".

	Returns:
		dict: Section mapping.
	"""
	if settings is None:
		settings = default_settings()
	if name in settings:
		return settings[name]
	# a bare section was handed in
	return settings

#============================================

def write_config_file(config_path: str, config: dict) -> None:
	"""
	Write a config file to disk.

	Args:
		config_path: Output file path.
		config: Config dictionary.
	"""
	text = yaml.safe_dump(config, sort_keys=False)
	os.makedirs(os.path.dirname(config_path) or ".", exist_ok=True)
	with open(config_path, "w", encoding="utf-8") as handle:
		handle.write(text)
	return

#============================================

def load_config(config_path: str) -> dict:
	"""
	Load a config file from disk.

	Args:
		config_path: Config file path.

	Returns:
		dict: Parsed config mapping.
	"""
	with open(config_path, "r", encoding="utf-8") as handle:
		data = yaml.safe_load(handle)
	if not isinstance(data, dict):
		raise RuntimeError("config file must be a mapping")
	if data.get(CONFIG_HEADER_KEY) != CONFIG_HEADER_VALUE:
		raise RuntimeError(f"config file must set {CONFIG_HEADER_KEY}: {CONFIG_HEADER_VALUE}")
	return data

#============================================

def coerce_float(value, config_path: str, key_path: str) -> float:
	if isinstance(value, bool):
		raise RuntimeError(f"config {config_path}: {key_path} must be a number")
	if isinstance(value, (int, float)):
		return float(value)
	if isinstance(value, str):
		try:
			return float(value)
		except ValueError as error:
			raise RuntimeError(f"config {config_path}: {key_path} must be a number") from error
	raise RuntimeError(f"config {config_path}: {key_path} must be a number")

#============================================

def coerce_int(value, config_path: str, key_path: str) -> int:
	if isinstance(value, bool):
		raise RuntimeError(f"config {config_path}: {key_path} must be an integer")
	if isinstance(value, int):
		return value
	if isinstance(value, float):
		return int(value)
	if isinstance(value, str):
		try:
			return int(float(value))
		except ValueError as error:
			raise RuntimeError(f"config {config_path}: {key_path} must be an integer") from error
	raise RuntimeError(f"config {config_path}: {key_path} must be an integer")

#============================================

def coerce_str(value, config_path: str, key_path: str) -> str:
	if isinstance(value, str):
		return value
	raise RuntimeError(f"config {config_path}: {key_path} must be a string")

#============================================

def coerce_bool(value, config_path: str, key_path: str) -> bool:
	if isinstance(value, bool):
		return value
	if isinstance(value, str) and value.strip().lower() in ("true", "yes", "1"):
		return True
	if isinstance(value, str) and value.strip().lower() in ("false", "no", "0"):
		return False
	raise RuntimeError(f"config {config_path}: {key_path} must be true or false")

#============================================

def _merged_section(config: dict, name: str) -> dict:
	defaults = default_config()["settings"][name]
	overrides = {}
	if isinstance(config, dict):
		settings = config.get("settings", {})
		if isinstance(settings, dict):
			overrides = settings.get(name, {}) or {}
	if not isinstance(overrides, dict):
		raise RuntimeError(f"settings.{name} must be a mapping")
	merged = copy.deepcopy(defaults)
	merged.update(overrides)
	return merged

#============================================

def build_settings(config: dict, config_path: str) -> dict:
	"""
	Normalize settings with defaults and validate ranges.

	Args:
		config: Raw config mapping.
		config_path: Config file path, used in error messages.

	Returns:
		dict: Normalized settings.
	"""
	locate = _merged_section(config, "locate")
	tune = _merged_section(config, "tune")
	select = _merged_section(config, "select")
	perspective = _merged_section(config, "perspective")
	probe = _merged_section(config, "probe")
	tracking = _merged_section(config, "tracking")
	shape_radius = coerce_int(locate["shape_radius"], config_path, "settings.locate.shape_radius")
	move_radius = coerce_int(locate["move_radius"], config_path, "settings.locate.move_radius")
	colordiff_threshold = coerce_float(locate["colordiff_threshold"],
		config_path, "settings.locate.colordiff_threshold")
	good_match_factor = coerce_float(locate["good_match_factor"],
		config_path, "settings.locate.good_match_factor")
	opacity_level = coerce_int(locate["opacity_level"], config_path, "settings.locate.opacity_level")
	required_area_ratio = coerce_float(locate["required_area_ratio"],
		config_path, "settings.locate.required_area_ratio")
	almost_full_ratio = coerce_float(locate["almost_full_ratio"],
		config_path, "settings.locate.almost_full_ratio")
	finish_radius = coerce_int(locate["finish_radius"], config_path, "settings.locate.finish_radius")
	metric = coerce_str(locate["metric"], config_path, "settings.locate.metric")
	tune_enabled = coerce_bool(tune["enabled"], config_path, "settings.tune.enabled")
	array_size = coerce_int(tune["array_size"], config_path, "settings.tune.array_size")
	border = coerce_int(tune["border"], config_path, "settings.tune.border")
	max_offset = coerce_int(tune["max_offset"], config_path, "settings.tune.max_offset")
	q_factor = coerce_float(tune["q_factor"], config_path, "settings.tune.q_factor")
	strong_rel_diff = coerce_float(tune["strong_rel_diff"], config_path, "settings.tune.strong_rel_diff")
	nearly_same_factor = coerce_float(tune["nearly_same_factor"],
		config_path, "settings.tune.nearly_same_factor")
	max_candidates = coerce_int(tune["max_candidates"], config_path, "settings.tune.max_candidates")
	num_points = coerce_int(select["num_points"], config_path, "settings.select.num_points")
	min_move_tolerance = coerce_int(select["min_move_tolerance"],
		config_path, "settings.select.min_move_tolerance")
	move_tolerance_divisor = coerce_int(select["move_tolerance_divisor"],
		config_path, "settings.select.move_tolerance_divisor")
	average_loops = coerce_int(select["average_loops"], config_path, "settings.select.average_loops")
	same_quality_margin = coerce_float(select["same_quality_margin"],
		config_path, "settings.select.same_quality_margin")
	precision = coerce_float(perspective["precision"], config_path, "settings.perspective.precision")
	precision_threshold = coerce_float(perspective["precision_threshold"],
		config_path, "settings.perspective.precision_threshold")
	max_iterations = coerce_int(perspective["max_iterations"],
		config_path, "settings.perspective.max_iterations")
	step_fraction = coerce_float(perspective["step_fraction"],
		config_path, "settings.perspective.step_fraction")
	sanity_bound = coerce_float(perspective["sanity_bound"],
		config_path, "settings.perspective.sanity_bound")
	max_alternates = coerce_int(perspective["max_alternates"],
		config_path, "settings.perspective.max_alternates")
	probe_enabled = coerce_bool(probe["enabled"], config_path, "settings.probe.enabled")
	max_attempts = coerce_int(probe["max_attempts"], config_path, "settings.probe.max_attempts")
	min_mask_pixels = coerce_int(probe["min_mask_pixels"], config_path, "settings.probe.min_mask_pixels")
	required_ratio = coerce_float(probe["required_ratio"], config_path, "settings.probe.required_ratio")
	required_cap = coerce_int(probe["required_cap"], config_path, "settings.probe.required_cap")
	reference = coerce_str(tracking["reference"], config_path, "settings.tracking.reference")
	report_format = coerce_str(tracking["report_format"], config_path, "settings.tracking.report_format")
	if shape_radius < 1:
		raise RuntimeError("locate.shape_radius must be >= 1")
	if move_radius < 0:
		raise RuntimeError("locate.move_radius must be >= 0")
	if colordiff_threshold <= 0 or colordiff_threshold > 1:
		raise RuntimeError("locate.colordiff_threshold must be > 0 and <= 1")
	if good_match_factor < 1:
		raise RuntimeError("locate.good_match_factor must be >= 1")
	if opacity_level < 0 or opacity_level > 255:
		raise RuntimeError("locate.opacity_level must be 0..255")
	if required_area_ratio <= 0 or required_area_ratio > 1:
		raise RuntimeError("locate.required_area_ratio must be > 0 and <= 1")
	if almost_full_ratio < required_area_ratio or almost_full_ratio > 1:
		raise RuntimeError("locate.almost_full_ratio must be required_area_ratio..1")
	if finish_radius < 0:
		raise RuntimeError("locate.finish_radius must be >= 0")
	if metric not in METRIC_NAMES:
		raise RuntimeError(f"locate.metric must be one of {', '.join(METRIC_NAMES)}")
	if array_size < 3 or array_size % 2 == 0:
		raise RuntimeError("tune.array_size must be an odd number >= 3")
	if border < 0 or 2 * border >= array_size:
		raise RuntimeError("tune.border must be >= 0 and smaller than half the array size")
	if max_offset < 0 or max_offset > border:
		raise RuntimeError("tune.max_offset must be 0..tune.border")
	if q_factor < 1:
		raise RuntimeError("tune.q_factor must be >= 1")
	if strong_rel_diff < 0 or strong_rel_diff > 1:
		raise RuntimeError("tune.strong_rel_diff must be 0..1")
	if nearly_same_factor < 1:
		raise RuntimeError("tune.nearly_same_factor must be >= 1")
	if max_candidates < 1:
		raise RuntimeError("tune.max_candidates must be >= 1")
	if num_points < 1 or num_points > 4:
		raise RuntimeError("select.num_points must be 1..4")
	if min_move_tolerance < 1:
		raise RuntimeError("select.min_move_tolerance must be >= 1")
	if move_tolerance_divisor < 1:
		raise RuntimeError("select.move_tolerance_divisor must be >= 1")
	if average_loops < 1:
		raise RuntimeError("select.average_loops must be >= 1")
	if same_quality_margin < 0 or same_quality_margin >= 1:
		raise RuntimeError("select.same_quality_margin must be >= 0 and < 1")
	if precision <= 0:
		raise RuntimeError("perspective.precision must be positive")
	if precision_threshold < precision:
		raise RuntimeError("perspective.precision_threshold must be >= perspective.precision")
	if max_iterations < 1:
		raise RuntimeError("perspective.max_iterations must be >= 1")
	if step_fraction <= 0 or step_fraction > 1:
		raise RuntimeError("perspective.step_fraction must be > 0 and <= 1")
	if sanity_bound <= 0:
		raise RuntimeError("perspective.sanity_bound must be positive")
	if max_alternates < 0:
		raise RuntimeError("perspective.max_alternates must be >= 0")
	if max_attempts < 1:
		raise RuntimeError("probe.max_attempts must be >= 1")
	if min_mask_pixels < 1:
		raise RuntimeError("probe.min_mask_pixels must be >= 1")
	if required_ratio <= 0 or required_ratio > 1:
		raise RuntimeError("probe.required_ratio must be > 0 and <= 1")
	if required_cap < 1:
		raise RuntimeError("probe.required_cap must be >= 1")
	if reference not in ("first", "previous"):
		raise RuntimeError("tracking.reference must be first or previous")
	if report_format not in ("yaml", "json"):
		raise RuntimeError("tracking.report_format must be yaml or json")
	return {
		"locate": {
			"shape_radius": shape_radius,
			"move_radius": move_radius,
			"colordiff_threshold": colordiff_threshold,
			"good_match_factor": good_match_factor,
			"opacity_level": opacity_level,
			"required_area_ratio": required_area_ratio,
			"almost_full_ratio": almost_full_ratio,
			"finish_radius": finish_radius,
			"metric": metric,
		},
		"tune": {
			"enabled": tune_enabled,
			"array_size": array_size,
			"border": border,
			"max_offset": max_offset,
			"q_factor": q_factor,
			"strong_rel_diff": strong_rel_diff,
			"nearly_same_factor": nearly_same_factor,
			"max_candidates": max_candidates,
		},
		"select": {
			"num_points": num_points,
			"min_move_tolerance": min_move_tolerance,
			"move_tolerance_divisor": move_tolerance_divisor,
			"average_loops": average_loops,
			"same_quality_margin": same_quality_margin,
		},
		"perspective": {
			"precision": precision,
			"precision_threshold": precision_threshold,
			"max_iterations": max_iterations,
			"step_fraction": step_fraction,
			"sanity_bound": sanity_bound,
			"max_alternates": max_alternates,
		},
		"probe": {
			"enabled": probe_enabled,
			"max_attempts": max_attempts,
			"min_mask_pixels": min_mask_pixels,
			"required_ratio": required_ratio,
			"required_cap": required_cap,
		},
		"tracking": {
			"reference": reference,
			"report_format": report_format,
		},
	}
