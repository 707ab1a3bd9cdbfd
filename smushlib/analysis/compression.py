#!/usr/bin/env python3

"""
compression.py

Compression-size activity proxy: encode short chunks of the proxy stream and
use the encoded size of each chunk as its action score. Static footage
compresses to almost nothing, busy footage does not.
"""

# Standard Library
import os
import tempfile

# PIP3 modules
import numpy

# local repo modules
from smushlib.core import utils
from smushlib.core.errors import InvalidInputError
from smushlib.media import ffmpeg_frames

#============================================

def chunked(images, chunk_size: int):
	"""
	Group a frame stream into lists of chunk_size frames; the last may be short.
	"""
	if chunk_size < 1:
		raise InvalidInputError("chunk size must be >= 1")
	chunk = []
	for image in images:
		chunk.append(image)
		if len(chunk) == chunk_size:
			yield chunk
			chunk = []
	if len(chunk) > 0:
		yield chunk

#============================================

def encoded_size(images, output_file: str, fps, crf: int = 23) -> int:
	with ffmpeg_frames.FrameSink(output_file, fps, codec="libx264", crf=crf) as sink:
		for image in images:
			sink.write(image)
	return os.path.getsize(output_file)

#============================================

def score_chunks(images, fps, chunk_size: int = 24, crf: int = 23, work_dir: str = None) -> numpy.ndarray:
	"""
	Score a proxy stream chunk by chunk.

	Args:
		images: Iterable of DecodedImage (usually thumbnails).
		fps: Frame rate used for the chunk encodes.
		chunk_size: Frames per chunk.
		crf: x264 quality for the chunk encodes.
		work_dir: Directory for the temporary chunk files.

	Returns:
		numpy.ndarray: (chunks, 2) float64 rows of (frames in chunk, encoded bytes).
	"""
	rows = []
	if work_dir is not None:
		os.makedirs(work_dir, exist_ok=True)
	with tempfile.TemporaryDirectory(prefix="smushlapse_chunks_", dir=work_dir) as temp_dir:
		for index, chunk in enumerate(chunked(images, chunk_size)):
			chunk_file = os.path.join(temp_dir, f"chunk_{index:06d}.mp4")
			rows.append((len(chunk), encoded_size(chunk, chunk_file, fps, crf=crf)))
			os.remove(chunk_file)
	table = numpy.asarray(rows, dtype=numpy.float64).reshape(-1, 2)
	utils.log(f"Scored {len(table)} chunks covering {int(table[:, 0].sum())} frames")
	return table
