#!/usr/bin/env python3

"""
activity.py

Per-frame visual activity: compact fingerprints and the difference between
two consecutive fingerprints.

Color frames fingerprint on hue, which ignores uniform lighting and shadow
changes. Gray frames have no usable hue and fingerprint on luma instead.
"""

# Standard Library
from dataclasses import dataclass

# PIP3 modules
import numpy

# local repo modules
from smushlib.analysis import imaging
from smushlib.core import utils
from smushlib.core.errors import InvalidInputError

HUE_DEGREES = 360

#============================================

@dataclass(frozen=True)
class Fingerprint():
	values: numpy.ndarray
	kind: str = "hue"

	#============================
	def __len__(self) -> int:
		return int(self.values.size)

#============================================

def hue_of(red, green, blue) -> numpy.ndarray:
	"""
	Hue in whole degrees (0..359) from RGB planes.

	Uses the 6-piece formula. Pixels with max == min (gray, black, white)
	have no hue and map to 0.

	Args:
		red: Red channel values.
		green: Green channel values.
		blue: Blue channel values.

	Returns:
		numpy.ndarray: int32 hue array with the shape of the inputs.
	"""
	red = numpy.asarray(red, dtype=numpy.int32)
	green = numpy.asarray(green, dtype=numpy.int32)
	blue = numpy.asarray(blue, dtype=numpy.int32)
	high = numpy.maximum(numpy.maximum(red, green), blue)
	low = numpy.minimum(numpy.minimum(red, green), blue)
	delta = high - low
	flat = delta == 0
	safe_delta = numpy.where(flat, 1, delta).astype(numpy.float64)
	hue = numpy.select(
		[high == red, high == green],
		[(green - blue) / safe_delta, 2.0 + (blue - red) / safe_delta],
		default=4.0 + (red - green) / safe_delta,
	)
	hue *= 60.0
	hue = numpy.where(hue < 0, hue + HUE_DEGREES, hue)
	hue = numpy.where(flat, 0.0, hue)
	return hue.astype(numpy.int32)

#============================================

def fingerprint(image: imaging.DecodedImage) -> Fingerprint:
	"""
	Flatten a frame into the array used for differencing.
	"""
	if image.is_gray:
		return Fingerprint(image.pixels.astype(numpy.int32).ravel(), kind="luma")
	red, green, blue = imaging.channel_planes(image)
	return Fingerprint(hue_of(red, green, blue).ravel(), kind="hue")

#============================================

def activity_score(fingerprint_a, fingerprint_b, circular: bool = None) -> float:
	"""
	Average per-pixel distance between two fingerprints.

	Hue is circular, so 0 and 359 are 1 degree apart, not 359. Averaging makes
	the score independent of resolution, so thumbnails score like full frames.

	Args:
		fingerprint_a: Fingerprint or sequence of ints.
		fingerprint_b: Fingerprint or sequence of ints.
		circular: Force hue wraparound on/off; default follows the fingerprint kind.

	Returns:
		float: Mean distance, always >= 0.
	"""
	kind_a = getattr(fingerprint_a, "kind", "hue")
	kind_b = getattr(fingerprint_b, "kind", "hue")
	if kind_a != kind_b:
		raise InvalidInputError(f"cannot compare {kind_a} and {kind_b} fingerprints")
	values_a = numpy.asarray(getattr(fingerprint_a, "values", fingerprint_a), dtype=numpy.int64).ravel()
	values_b = numpy.asarray(getattr(fingerprint_b, "values", fingerprint_b), dtype=numpy.int64).ravel()
	if values_a.size == 0 or values_a.size != values_b.size:
		raise InvalidInputError(
			f"fingerprints must be the same non-zero length ({values_a.size} vs {values_b.size})")
	if circular is None:
		circular = kind_a == "hue"
	diff = numpy.abs(values_a - values_b)
	if circular:
		diff = numpy.minimum(diff, HUE_DEGREES - diff)
	return float(diff.mean())

#============================================

def score_frames(images, total: int = None) -> numpy.ndarray:
	"""
	Score every consecutive pair of a frame stream.

	Only the previous fingerprint is kept, so the stream can be arbitrarily long.

	Args:
		images: Iterable of DecodedImage.
		total: Expected frame count for the progress bar.

	Returns:
		numpy.ndarray: float64 scores, one fewer than the number of frames.
	"""
	scores = []
	previous = None
	for image in utils.progress(images, total=total, desc="scoring"):
		current = fingerprint(image)
		if previous is not None:
			scores.append(activity_score(previous, current))
		previous = current
	return numpy.asarray(scores, dtype=numpy.float64)
