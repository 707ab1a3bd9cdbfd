#!/usr/bin/env python3

"""
project.py

Run orchestration.

Pass 1 scores a cheap proxy stream (thumbnails) and turns the scores into a
merge schedule. Pass 2 decodes the full resolution stream again and folds it
through the MergePipeline into the output encoder. Pass 1 always finishes
before pass 2 starts, since the schedule depends on the whole score series.

Inputs are one video path or a list of InputClips read back to back as one
stream; see smushlib/media/sources.py.
"""

# Standard Library
import contextlib

# PIP3 modules
import numpy

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.analysis import activity
from smushlib.analysis import compression
from smushlib.analysis import imaging
from smushlib.analysis import smoothing
from smushlib.core import cache
from smushlib.core import config
from smushlib.core import keyframes
from smushlib.core import pipeline
from smushlib.core import scheduler
from smushlib.core import utils
from smushlib.core.errors import InvalidInputError
from smushlib.media import ffmpeg_frames
from smushlib.media import sources

#============================================

def resolve_settings(input_file: str, config_file: str = None, overrides: dict = None) -> dict:
	"""
	Load a config file (or the defaults) and apply command line overrides.

	Args:
		input_file: Input video path (the first clip names the default cache dir).
		config_file: Optional YAML config path.
		overrides: Flat settings that win over the file, None values ignored.

	Returns:
		dict: Validated settings.
	"""
	raw = None
	config_path = "<defaults>"
	if config_file is not None:
		raw = config.load_config(config_file)
		config_path = config_file
	settings = config.build_settings(raw, config_path, input_file)
	for key, value in (overrides or {}).items():
		if value is None:
			continue
		settings[key] = value
	settings["output_fps"] = config.coerce_fps(settings["output_fps"], config_path, "output_fps")
	config.check_settings(settings, config_path)
	return settings

#============================================

def target_output_frames(settings: dict) -> int:
	frames = utils.frames_from_seconds(settings["output_seconds"], settings["output_fps"])
	return max(1, utils.round_half_up_fraction(frames))

#============================================

def backend_options(settings: dict) -> dict:
	if settings["backend"] == "torch":
		return {"device": settings["device"]}
	return {}

#============================================

def _cache_settings(settings: dict, clips: list) -> dict:
	keys = ("filter", "proxy_filter", "scorer")
	if settings["scorer"] == "compression":
		keys = keys + ("chunk_size",)
	values = {key: settings[key] for key in keys}
	values["clip_filters"] = sources.clip_filters(clips)
	return values

#============================================

def score_pairs(inputs, settings: dict) -> numpy.ndarray:
	"""
	Pass 1 with the hue scorer: one activity score per pair of proxy frames.
	"""
	clips = sources.as_clips(inputs)
	score_cache = cache.ScoreCache(settings["cache_dir"])
	key = score_cache.key_for(sources.clip_paths(clips), _cache_settings(settings, clips))
	scores = score_cache.load(key)
	if scores is not None:
		return scores
	source = sources.open_clips(clips, settings["filter"], settings["proxy_filter"])
	frames = source
	if settings["queue_size"] > 0:
		frames = pipeline.prefetch(source, settings["queue_size"])
	scores = activity.score_frames(frames, total=source.frame_count)
	score_cache.store(key, scores)
	return scores

#============================================

def score_chunks(inputs, settings: dict) -> numpy.ndarray:
	"""
	Pass 1 with the compression scorer.

	Returns:
		numpy.ndarray: (chunks, 2) array of (frames in chunk, encoded bytes).
	"""
	clips = sources.as_clips(inputs)
	score_cache = cache.ScoreCache(settings["cache_dir"])
	key = score_cache.key_for(sources.clip_paths(clips), _cache_settings(settings, clips))
	table = score_cache.load(key)
	if table is not None:
		return table
	source = sources.open_clips(clips, settings["filter"], settings["proxy_filter"])
	frames = utils.progress(source, total=source.frame_count, desc="scoring")
	table = compression.score_chunks(frames, source.fps, chunk_size=settings["chunk_size"],
		work_dir=settings["cache_dir"])
	score_cache.store(key, table)
	return table

#============================================

def plan_schedule(inputs, settings: dict, keyframes_file: str = None,
	table_file: str = None) -> list:
	"""
	Build the merge schedule for one run.

	Args:
		inputs: Input video path or list of InputClips.
		settings: Validated settings.
		keyframes_file: YAML keyframe script, required in keyframes mode.
		table_file: Two-column ratio table, required in table mode.

	Returns:
		list: Merge counts.
	"""
	mode = settings["mode"]
	if mode == "keyframes":
		if keyframes_file is None:
			raise InvalidInputError("keyframes mode needs a keyframe script")
		first_clip = sources.as_clips(inputs)[0]
		source_fps = ffmpeg_frames.probe_video_stream(first_clip.path)["fps"]
		script = keyframes.load_keyframe_script(keyframes_file)
		schedule = keyframes.keyframe_schedule(script, source_fps, settings["output_fps"])
	elif mode == "table":
		if table_file is None:
			raise InvalidInputError("table mode needs a ratio table file")
		schedule = scheduler.ratio_table_schedule(scheduler.load_ratio_table(table_file))
	elif settings["scorer"] == "compression":
		schedule = _plan_from_compression(inputs, settings)
	else:
		schedule = _plan_from_activity(inputs, settings)
	schedule = scheduler.validate_schedule(schedule)
	log_schedule(schedule, settings["output_fps"])
	return schedule

#============================================

def _plan_from_activity(inputs, settings: dict) -> list:
	scores = score_pairs(inputs, settings)
	target = target_output_frames(settings)
	smoothed = smoothing.savitzky_golay_smooth(scores, settings["window"], settings["degree"])
	# the polynomial fit can overshoot below zero next to sharp drops
	smoothed = numpy.clip(smoothed, 0.0, None)
	if settings["mode"] == "direct":
		exponents = settings["exponent_sweep"]
		if not settings["variability"]:
			exponents = [1.0]
		schedule, exponent = scheduler.exponent_search_schedule(smoothed, target,
			exponents=exponents, min_merge=settings["min_merge"],
			max_merge=settings["max_merge"], tolerance=settings["tolerance"])
		if exponent is not None:
			utils.log(f"Variability exponent: {exponent}")
		return schedule
	weights = smoothed
	if settings["variability"] and len(smoothed) > 0:
		weights = smoothing.enhance_variability(smoothed, settings["exponent"],
			min_merge=settings["min_merge"], max_merge=settings["max_merge"])
	return scheduler.threshold_bucket_schedule(weights, target)

#============================================

def _plan_from_compression(inputs, settings: dict) -> list:
	table = score_chunks(inputs, settings)
	if len(table) == 0:
		raise InvalidInputError("no frames decoded from the input clips")
	total_frames = int(table[:, 0].sum())
	rows = scheduler.plan_from_chunk_scores(table[:, 1], settings["chunk_size"],
		window_size=settings["window"], polynomial_degree=settings["degree"],
		exponent=settings["exponent"], min_merge=settings["min_merge"],
		max_merge=settings["max_merge"], total_frames=total_frames)
	return scheduler.ratio_table_schedule(rows)

#============================================

def log_schedule(schedule: list, output_fps) -> None:
	summary = scheduler.schedule_summary(schedule, float(output_fps))
	utils.log(
		f"Schedule: {summary['output_frames']} output frames from {summary['source_frames']} "
		f"source frames ({utils.format_duration(summary['output_seconds'])} of output)")
	utils.log(f"Merge counts range {summary['min_merge']} to {summary['max_merge']}")
	return

#============================================

def run_merge(inputs, output_file: str, schedule: list,
	settings: dict) -> pipeline.PipelineReport:
	"""
	Pass 2: decode the full stream, merge it and encode the output.
	"""
	merger = pipeline.MergePipeline(schedule, backend=settings["backend"],
		backend_options=backend_options(settings), queue_size=settings["queue_size"])
	source = sources.open_clips(inputs, settings["filter"])
	with ffmpeg_frames.FrameSink(output_file, settings["output_fps"], codec=settings["codec"],
		crf=settings["crf"], pixel_format=settings["pixel_format"]) as sink:
		report = merger.run_to_sink(source, sink)
	return report

#============================================

def make_timelapse(inputs, output_file: str, settings: dict,
	keyframes_file: str = None, table_file: str = None) -> pipeline.PipelineReport:
	"""
	Both passes, start to finish.

	Args:
		inputs: Input video path or list of InputClips, read back to back.
		output_file: Output video path.
		settings: Validated settings.
		keyframes_file: Keyframe script for keyframes mode.
		table_file: Ratio table for table mode.

	Returns:
		PipelineReport: Pass 2 counters.
	"""
	clips = sources.as_clips(inputs)
	for clip in clips:
		utils.ensure_file_exists(clip.path)
	utils.check_dependency("ffmpeg")
	utils.check_dependency("ffprobe")
	schedule = plan_schedule(clips, settings, keyframes_file=keyframes_file,
		table_file=table_file)
	return run_merge(clips, output_file, schedule, settings)

#============================================

def average_images(image_files: list, output_file: str, backend: str = "cpu",
	options: dict = None) -> imaging.DecodedImage:
	"""
	Average a list of image files into one image and save it.

	All images must have the same size.
	"""
	if len(image_files) == 0:
		raise InvalidInputError("no images to average")
	first = imaging.load_image(image_files[0])
	merger = accumulator.blank_of(backend, first.width, first.height, **(options or {}))
	with contextlib.closing(merger):
		merger.add(first)
		for image_file in utils.progress(image_files[1:], total=len(image_files) - 1,
			desc="averaging", unit="image"):
			merger.add(imaging.load_image(image_file))
		average = merger.to_average_and_reset()
	imaging.to_pil(average).save(output_file)
	utils.log(f"Averaged {len(image_files)} images into {output_file}")
	return average
