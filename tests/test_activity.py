"""
Pytest coverage for fingerprints and activity scores.
"""

# Standard Library
import os
import sys

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from smushlib.analysis import activity
from smushlib.analysis import imaging
from smushlib.core.errors import InvalidInputError

#============================================

def test_hue_wraparound() -> None:
	"""0 and 359 degrees are one degree apart."""
	far = activity.activity_score([0], [359])
	near = activity.activity_score([0], [1])
	assert far == pytest.approx(near)
	assert far == pytest.approx(1.0)

#============================================

def test_score_is_mean_distance() -> None:
	score = activity.activity_score([0, 10, 180], [0, 20, 0])
	assert score == pytest.approx((0 + 10 + 180) / 3)

#============================================

def test_length_mismatch_raises() -> None:
	with pytest.raises(InvalidInputError):
		activity.activity_score([1, 2], [1])
	with pytest.raises(InvalidInputError):
		activity.activity_score([], [])

#============================================

def test_hue_primaries() -> None:
	red = numpy.array([255, 0, 0, 128])
	green = numpy.array([0, 255, 0, 128])
	blue = numpy.array([0, 0, 255, 128])
	hue = activity.hue_of(red, green, blue)
	assert hue.tolist() == [0, 120, 240, 0]

#============================================

def test_hue_negative_wraps_into_range() -> None:
	# red max with blue above green lands just below 360
	hue = activity.hue_of(numpy.array([255]), numpy.array([0]), numpy.array([10]))
	assert 350 <= int(hue[0]) <= 359

#============================================

def test_gray_images_use_luma() -> None:
	dark = imaging.DecodedImage(numpy.full((2, 2), 10, dtype=numpy.uint8), imaging.PixelFormat.GRAY8)
	light = imaging.DecodedImage(numpy.full((2, 2), 30, dtype=numpy.uint8), imaging.PixelFormat.GRAY8)
	first = activity.fingerprint(dark)
	second = activity.fingerprint(light)
	assert first.kind == "luma"
	assert activity.activity_score(first, second) == pytest.approx(20.0)

#============================================

def test_luma_and_hue_do_not_mix() -> None:
	gray = imaging.DecodedImage(numpy.zeros((2, 2), dtype=numpy.uint8), imaging.PixelFormat.GRAY8)
	color = imaging.DecodedImage(numpy.zeros((2, 2, 3), dtype=numpy.uint8))
	with pytest.raises(InvalidInputError):
		activity.activity_score(activity.fingerprint(gray), activity.fingerprint(color))

#============================================

def test_uniform_brightness_change_scores_zero() -> None:
	rgb = numpy.zeros((4, 4, 3), dtype=numpy.uint8)
	rgb[:, :] = (200, 100, 50)
	darker = (rgb // 2).astype(numpy.uint8)
	first = activity.fingerprint(imaging.from_rgb_array(rgb))
	second = activity.fingerprint(imaging.from_rgb_array(darker))
	assert activity.activity_score(first, second) == pytest.approx(0.0)

#============================================

def test_score_frames_length() -> None:
	frames = []
	for index in range(5):
		rgb = numpy.zeros((3, 3, 3), dtype=numpy.uint8)
		rgb[:, :, 0] = 255
		rgb[:, :, 1] = index * 40
		frames.append(imaging.from_rgb_array(rgb))
	scores = activity.score_frames(frames)
	assert scores.shape == (4,)
	assert numpy.all(scores > 0)
