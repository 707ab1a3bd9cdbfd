#!/usr/bin/env python3

"""
config.py

YAML run configuration. A config file carries the `smushlapse: 1` header
and a `settings:` tree; every key is optional and falls back to the
defaults below. build_settings() validates the tree into a flat dict.
"""

# Standard Library
import os
from fractions import Fraction

# PIP3 modules
import yaml

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.core import utils
from smushlib.core.errors import ConfigError
from smushlib.media import ffmpeg_frames

CONFIG_HEADER_KEY = "smushlapse"
CONFIG_HEADER_VALUE = 1

SCORERS = ("hue", "compression")
SCHEDULE_MODES = ("threshold", "direct", "keyframes", "table")

#============================================

def default_config_path(input_file: str) -> str:
	return f"{input_file}.smushlapse.config.yaml"

#============================================

def default_cache_dir(input_file: str) -> str:
	return f"{input_file}.smushlapse_cache"

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
			"output": {
				"fps": 60,
				"seconds": 30,
				"codec": "libx264",
				"crf": 18,
				"pixel_format": "yuv420p",
			},
			"analysis": {
				"proxy_filter": ffmpeg_frames.THUMBNAIL_FILTER,
				"scorer": "hue",
				"chunk_size": 24,
			},
			"smoothing": {
				"window": 5,
				"degree": 2,
			},
			"variability": {
				"enabled": True,
				"exponent": 2.0,
				"min_merge": 1,
				"max_merge": 100,
				"exponent_sweep": [1.0, 1.5, 2.0, 3.0, 4.0],
				"tolerance": 0.05,
			},
			"schedule": {
				"mode": "threshold",
			},
			"accumulator": {
				"backend": "cpu",
				"device": "auto",
			},
			"pipeline": {
				"queue_size": 64,
			},
			"io": {
				"cache_dir": None,
				"filter": None,
			},
		},
	}

#============================================

def write_config_file(config_path: str, config: dict) -> None:
	"""
	Write a config file to disk.

	Args:
		config_path: Output file path.
		config: Config dictionary.
	"""
	text = yaml.safe_dump(config, sort_keys=False, default_flow_style=None)
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
	if not os.path.isfile(config_path):
		raise ConfigError(f"config file not found: {config_path}")
	with open(config_path, "r", encoding="utf-8") as handle:
		data = yaml.safe_load(handle)
	if not isinstance(data, dict):
		raise ConfigError("config file must be a mapping")
	if data.get(CONFIG_HEADER_KEY) != CONFIG_HEADER_VALUE:
		raise ConfigError(f"config file must set {CONFIG_HEADER_KEY}: {CONFIG_HEADER_VALUE}")
	return data

#============================================

def coerce_float(value, config_path: str, key_path: str) -> float:
	if isinstance(value, bool):
		raise ConfigError(f"config {config_path}: {key_path} must be a number")
	if isinstance(value, (int, float)):
		return float(value)
	if isinstance(value, str):
		try:
			return float(value)
		except ValueError as exc:
			raise ConfigError(f"config {config_path}: {key_path} must be a number") from exc
	raise ConfigError(f"config {config_path}: {key_path} must be a number")

#============================================

def coerce_int(value, config_path: str, key_path: str) -> int:
	if isinstance(value, bool):
		raise ConfigError(f"config {config_path}: {key_path} must be an integer")
	if isinstance(value, int):
		return value
	if isinstance(value, float) and value.is_integer():
		return int(value)
	if isinstance(value, str) and value.strip().lstrip("-").isdigit():
		return int(value)
	raise ConfigError(f"config {config_path}: {key_path} must be an integer")

#============================================

def coerce_str(value, config_path: str, key_path: str) -> str:
	if isinstance(value, str):
		return value
	raise ConfigError(f"config {config_path}: {key_path} must be a string")

#============================================

def coerce_bool(value, config_path: str, key_path: str) -> bool:
	if isinstance(value, bool):
		return value
	raise ConfigError(f"config {config_path}: {key_path} must be true or false")

#============================================

def coerce_fps(value, config_path: str, key_path: str) -> Fraction:
	try:
		return utils.parse_fps(value)
	except (RuntimeError, ValueError, ZeroDivisionError) as exc:
		raise ConfigError(f"config {config_path}: {key_path} must be a frame rate ({exc})") from exc

#============================================

def coerce_optional_str(value, config_path: str, key_path: str):
	if value is None:
		return None
	text = coerce_str(value, config_path, key_path).strip()
	if text == "":
		return None
	return text

#============================================

def coerce_float_list(value, config_path: str, key_path: str) -> list:
	if not isinstance(value, list) or len(value) == 0:
		raise ConfigError(f"config {config_path}: {key_path} must be a non-empty list")
	return [coerce_float(item, config_path, f"{key_path}[{index}]") for index, item in enumerate(value)]

#============================================

def _section(overrides: dict, name: str, config_path: str) -> dict:
	section = overrides.get(name, {})
	if section is None:
		return {}
	if not isinstance(section, dict):
		raise ConfigError(f"config {config_path}: settings.{name} must be a mapping")
	return section

#============================================

def build_settings(config: dict, config_path: str, input_file: str) -> dict:
	"""
	Normalize settings with defaults.

	Args:
		config: Raw config mapping (may be None for pure defaults).
		config_path: Config file path, used in error messages.
		input_file: Input video path, used for the default cache dir.

	Returns:
		dict: Flat, validated settings.
	"""
	defaults = default_config()["settings"]
	overrides = {}
	if isinstance(config, dict):
		overrides = config.get("settings", {}) or {}
	if not isinstance(overrides, dict):
		raise ConfigError(f"config {config_path}: settings must be a mapping")
	output = _section(overrides, "output", config_path)
	analysis = _section(overrides, "analysis", config_path)
	smoothing = _section(overrides, "smoothing", config_path)
	variability = _section(overrides, "variability", config_path)
	schedule = _section(overrides, "schedule", config_path)
	backend = _section(overrides, "accumulator", config_path)
	pipeline = _section(overrides, "pipeline", config_path)
	io = _section(overrides, "io", config_path)

	output_fps = coerce_fps(output.get("fps", defaults["output"]["fps"]),
		config_path, "settings.output.fps")
	settings = {
		"output_fps": output_fps,
		"output_seconds": coerce_float(output.get("seconds", defaults["output"]["seconds"]),
			config_path, "settings.output.seconds"),
		"codec": coerce_str(output.get("codec", defaults["output"]["codec"]),
			config_path, "settings.output.codec"),
		"crf": coerce_int(output.get("crf", defaults["output"]["crf"]),
			config_path, "settings.output.crf"),
		"pixel_format": coerce_str(output.get("pixel_format", defaults["output"]["pixel_format"]),
			config_path, "settings.output.pixel_format"),
		"proxy_filter": coerce_optional_str(analysis.get("proxy_filter", defaults["analysis"]["proxy_filter"]),
			config_path, "settings.analysis.proxy_filter"),
		"scorer": coerce_str(analysis.get("scorer", defaults["analysis"]["scorer"]),
			config_path, "settings.analysis.scorer"),
		"chunk_size": coerce_int(analysis.get("chunk_size", defaults["analysis"]["chunk_size"]),
			config_path, "settings.analysis.chunk_size"),
		"window": coerce_int(smoothing.get("window", defaults["smoothing"]["window"]),
			config_path, "settings.smoothing.window"),
		"degree": coerce_int(smoothing.get("degree", defaults["smoothing"]["degree"]),
			config_path, "settings.smoothing.degree"),
		"variability": coerce_bool(variability.get("enabled", defaults["variability"]["enabled"]),
			config_path, "settings.variability.enabled"),
		"exponent": coerce_float(variability.get("exponent", defaults["variability"]["exponent"]),
			config_path, "settings.variability.exponent"),
		"min_merge": coerce_int(variability.get("min_merge", defaults["variability"]["min_merge"]),
			config_path, "settings.variability.min_merge"),
		"max_merge": coerce_int(variability.get("max_merge", defaults["variability"]["max_merge"]),
			config_path, "settings.variability.max_merge"),
		"exponent_sweep": coerce_float_list(
			variability.get("exponent_sweep", defaults["variability"]["exponent_sweep"]),
			config_path, "settings.variability.exponent_sweep"),
		"tolerance": coerce_float(variability.get("tolerance", defaults["variability"]["tolerance"]),
			config_path, "settings.variability.tolerance"),
		"mode": coerce_str(schedule.get("mode", defaults["schedule"]["mode"]),
			config_path, "settings.schedule.mode"),
		"backend": coerce_str(backend.get("backend", defaults["accumulator"]["backend"]),
			config_path, "settings.accumulator.backend"),
		"device": coerce_str(backend.get("device", defaults["accumulator"]["device"]),
			config_path, "settings.accumulator.device"),
		"queue_size": coerce_int(pipeline.get("queue_size", defaults["pipeline"]["queue_size"]),
			config_path, "settings.pipeline.queue_size"),
		"filter": coerce_optional_str(io.get("filter", defaults["io"]["filter"]),
			config_path, "settings.io.filter"),
	}
	cache_dir = io.get("cache_dir")
	if cache_dir is None:
		cache_dir = default_cache_dir(input_file)
	if not isinstance(cache_dir, str) or cache_dir.strip() == "":
		raise ConfigError(f"config {config_path}: settings.io.cache_dir must be a string or null")
	settings["cache_dir"] = cache_dir
	check_settings(settings, config_path)
	return settings

#============================================

def check_settings(settings: dict, config_path: str) -> None:
	if settings["output_fps"] <= 0:
		raise ConfigError(f"config {config_path}: settings.output.fps must be > 0")
	if settings["output_seconds"] <= 0:
		raise ConfigError(f"config {config_path}: settings.output.seconds must be > 0")
	if settings["scorer"] not in SCORERS:
		raise ConfigError(f"config {config_path}: settings.analysis.scorer must be one of {', '.join(SCORERS)}")
	if settings["chunk_size"] < 1:
		raise ConfigError(f"config {config_path}: settings.analysis.chunk_size must be >= 1")
	if settings["window"] < 1 or settings["window"] % 2 == 0:
		raise ConfigError(f"config {config_path}: settings.smoothing.window must be a positive odd number")
	if settings["degree"] < 0 or settings["degree"] >= settings["window"]:
		raise ConfigError(f"config {config_path}: settings.smoothing.degree must be 0..window-1")
	if settings["exponent"] <= 0:
		raise ConfigError(f"config {config_path}: settings.variability.exponent must be > 0")
	if settings["min_merge"] < 1:
		raise ConfigError(f"config {config_path}: settings.variability.min_merge must be >= 1")
	if settings["max_merge"] < settings["min_merge"]:
		raise ConfigError(f"config {config_path}: settings.variability.max_merge must be >= min_merge")
	if settings["tolerance"] < 0:
		raise ConfigError(f"config {config_path}: settings.variability.tolerance must be >= 0")
	if settings["mode"] not in SCHEDULE_MODES:
		raise ConfigError(f"config {config_path}: settings.schedule.mode must be one of {', '.join(SCHEDULE_MODES)}")
	if settings["backend"] not in accumulator.BACKENDS:
		raise ConfigError(
			f"config {config_path}: settings.accumulator.backend must be one of {', '.join(accumulator.BACKENDS)}")
	if settings["queue_size"] < 0:
		raise ConfigError(f"config {config_path}: settings.pipeline.queue_size must be >= 0")
	return
