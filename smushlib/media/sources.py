#!/usr/bin/env python3

"""
sources.py

Input clips. A run reads one or more video files back to back as a single
frame stream, for example a recording split across several camera files.
Each clip may carry its own ffmpeg filter (usually a transpose), applied
before the run-wide filter.

Sources table format, one clip per line, tab separated:

	path/to/clip.mp4	transpose=1
	path/to/next.mp4

Blank lines and '#' comments are skipped. Relative paths are resolved
against the table's directory.
"""

# Standard Library
import os
from dataclasses import dataclass

# local repo modules
from smushlib.core import utils
from smushlib.core.errors import InvalidInputError
from smushlib.media import ffmpeg_frames

#============================================

@dataclass(frozen=True)
class InputClip():
	path: str
	video_filter: str = None

#============================================

def as_clips(inputs) -> list:
	"""
	Normalize a path, an InputClip or a list of either into InputClips.
	"""
	if isinstance(inputs, (str, InputClip)):
		inputs = [inputs]
	clips = []
	for item in inputs:
		if isinstance(item, InputClip):
			clips.append(item)
		elif isinstance(item, str):
			clips.append(InputClip(item))
		else:
			raise InvalidInputError(f"not an input clip: {item!r}")
	if len(clips) == 0:
		raise InvalidInputError("no input clips")
	return clips

#============================================

def load_sources_table(filepath: str) -> list:
	"""
	Read a sources table into InputClips.

	Args:
		filepath: Tab separated table path.

	Returns:
		list: InputClip per line, in order.
	"""
	utils.ensure_file_exists(filepath)
	base_dir = os.path.dirname(os.path.abspath(filepath))
	clips = []
	with open(filepath, "r", encoding="utf-8") as handle:
		for line_number, line in enumerate(handle, start=1):
			text = line.rstrip("\n")
			if text.strip() == "" or text.lstrip().startswith("#"):
				continue
			parts = [part.strip() for part in text.split("\t")]
			if len(parts) > 2:
				raise InvalidInputError(f"{filepath}:{line_number}: expected path and optional filter")
			path = parts[0]
			if not os.path.isabs(path):
				path = os.path.join(base_dir, path)
			video_filter = None
			if len(parts) == 2 and parts[1] != "":
				video_filter = parts[1]
			clips.append(InputClip(path, video_filter))
	if len(clips) == 0:
		raise InvalidInputError(f"{filepath}: no clips listed")
	return clips

#============================================

def clip_paths(clips: list) -> list:
	return [clip.path for clip in clips]

#============================================

def clip_filters(clips: list) -> list:
	return [clip.video_filter for clip in clips]

#============================================

def open_clips(clips: list, *filters):
	"""
	Open clips as one frame source.

	Args:
		clips: InputClips in playback order.
		filters: Run-wide filters, applied after each clip's own filter.

	Returns:
		FrameSource for a single clip, ChainedFrameSource otherwise.
	"""
	opened = []
	for clip in as_clips(clips):
		video_filter = ffmpeg_frames.join_filters(clip.video_filter, *filters)
		opened.append(ffmpeg_frames.FrameSource(clip.path, video_filter))
	if len(opened) == 1:
		return opened[0]
	return ffmpeg_frames.ChainedFrameSource(opened)
