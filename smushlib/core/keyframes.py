#!/usr/bin/env python3

"""
keyframes.py

Keyframe scripts: "starting at source time X, squeeze everything up to the
next keyframe into Y seconds of output". The last keyframe only marks the end
of the script; its duration is ignored.
"""

# Standard Library
from decimal import Decimal
from fractions import Fraction

# PIP3 modules
import yaml

# local repo modules
from smushlib.core import utils
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import ScheduleOrderError
from smushlib.core.errors import ScheduleRateError

KEYFRAME_HEADER_KEY = "keyframes"

#============================================

def normalize_keyframes(script) -> list:
	"""
	Turn a mapping or pair list into [(Decimal start, Decimal duration), ...].

	Order is kept as written so out-of-order scripts can be reported.
	"""
	if isinstance(script, dict):
		items = list(script.items())
	else:
		items = list(script)
	if len(items) < 2:
		raise InvalidInputError("a keyframe script needs at least two keyframes")
	keyframes = []
	for start, duration in items:
		start_seconds = utils.parse_timecode(start)
		duration_seconds = utils.parse_timecode(duration)
		if start_seconds < 0 or duration_seconds < 0:
			raise InvalidInputError("keyframe times and durations must be >= 0")
		keyframes.append((start_seconds, duration_seconds))
	return keyframes

#============================================

def keyframe_schedule(script, source_fps, output_fps) -> list:
	"""
	Convert a keyframe script into merge counts.

	For each pair of consecutive keyframes the span of source frames is
	compressed at a constant speedup (source frames / target output frames).
	That ratio, rounded, is repeated until the span is covered, and the last
	step is clipped at the next keyframe.

	Args:
		script: Mapping of source timecode to output duration.
		source_fps: Source frame rate.
		output_fps: Output frame rate.

	Returns:
		list: Merge counts.
	"""
	source_rate = utils.parse_fps(source_fps)
	output_rate = utils.parse_fps(output_fps)
	keyframes = normalize_keyframes(script)
	schedule = []
	current_frame = 0
	for (start, duration), (next_start, _) in zip(keyframes, keyframes[1:]):
		if next_start <= start:
			raise ScheduleOrderError(f"keyframes must be increasing: {start}, {next_start}")
		source_frames = utils.frames_from_seconds(next_start - start, source_rate)
		target_frames = utils.frames_from_seconds(duration, output_rate)
		if target_frames <= 0:
			raise ScheduleRateError(f"keyframe at {start}s has no output duration")
		speedup = source_frames / target_frames
		if speedup < 1:
			raise ScheduleRateError(
				f"keyframe at {start}s needs speedup {float(speedup):.3f}, slow motion is not supported")
		step_size = max(1, utils.round_half_up_fraction(speedup))
		end_frame = int(Fraction(str(next_start)) * source_rate)
		while current_frame < end_frame:
			step = min(end_frame - current_frame, step_size)
			schedule.append(step)
			current_frame += step
	utils.log(f"Total output time: {len(schedule) / float(output_rate):.2f}sec")
	return schedule

#============================================

def load_keyframe_script(filepath: str) -> list:
	"""
	Read a YAML keyframe script.

	Either a plain mapping of timecode to duration, or a mapping with a
	`keyframes:` list of {at: ..., duration: ...} items.
	"""
	utils.ensure_file_exists(filepath)
	with open(filepath, "r", encoding="utf-8") as handle:
		data = yaml.safe_load(handle)
	if isinstance(data, dict) and KEYFRAME_HEADER_KEY in data:
		entries = data[KEYFRAME_HEADER_KEY]
		if not isinstance(entries, list):
			raise InvalidInputError(f"{filepath}: keyframes must be a list")
		pairs = []
		for entry in entries:
			if not isinstance(entry, dict) or "at" not in entry or "duration" not in entry:
				raise InvalidInputError(f"{filepath}: each keyframe needs 'at' and 'duration'")
			pairs.append((entry["at"], entry["duration"]))
		return pairs
	if isinstance(data, dict):
		return list(data.items())
	raise InvalidInputError(f"{filepath}: keyframe script must be a mapping")

#============================================

def script_output_seconds(script) -> Decimal:
	keyframes = normalize_keyframes(script)
	return sum((duration for _, duration in keyframes[:-1]), Decimal(0))
