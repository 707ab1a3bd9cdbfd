"""
Pytest coverage for the frame accumulator backends.
"""

# Standard Library
import importlib.util
import os
import sys

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# tests helpers
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
if TESTS_DIR not in sys.path:
	sys.path.insert(0, TESTS_DIR)
from frame_utils import rgb_frame
from frame_utils import solid_frame

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.accumulate.cpu_backend import CpuAccumulator
from smushlib.analysis import imaging
from smushlib.core.errors import AccumulatorOverflowError
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import SmushError
from smushlib.core.errors import UnsupportedPixelLayoutError

#============================================

def _layouts(rgb: numpy.ndarray) -> list:
	"""
	The same picture in every supported pixel layout.
	"""
	red = rgb[:, :, 0]
	green = rgb[:, :, 1]
	blue = rgb[:, :, 2]
	alpha = numpy.full_like(red, 77)
	packed = imaging.pack_int_rgb(rgb, alpha=0x80)
	bgr_packed = (blue.astype(numpy.uint32) << 16) | (green.astype(numpy.uint32) << 8) | red
	return [
		imaging.DecodedImage(rgb, imaging.PixelFormat.RGB24),
		imaging.DecodedImage(numpy.stack((blue, green, red), axis=2), imaging.PixelFormat.BGR24),
		imaging.DecodedImage(numpy.stack((red, green, blue, alpha), axis=2), imaging.PixelFormat.RGBA),
		imaging.DecodedImage(numpy.stack((blue, green, red, alpha), axis=2), imaging.PixelFormat.BGRA),
		imaging.DecodedImage(numpy.stack((alpha, red, green, blue), axis=2), imaging.PixelFormat.ARGB),
		imaging.DecodedImage(numpy.stack((alpha, blue, green, red), axis=2), imaging.PixelFormat.ABGR),
		imaging.DecodedImage(packed, imaging.PixelFormat.INT_ARGB),
		imaging.DecodedImage(packed & numpy.uint32(0x00FFFFFF), imaging.PixelFormat.INT_RGB),
		imaging.DecodedImage(bgr_packed.astype(numpy.uint32), imaging.PixelFormat.INT_BGR),
	]

#============================================

def _backend_names() -> list:
	names = ["cpu"]
	if importlib.util.find_spec("cv2") is not None:
		names.append("opencv")
	if importlib.util.find_spec("torch") is not None:
		names.append("torch")
	return names

BACKENDS = _backend_names()

#============================================

@pytest.mark.parametrize("backend", BACKENDS)
def test_average_of_one_is_itself(backend: str) -> None:
	rgb = rgb_frame(7, 5, seed=11)
	for image in _layouts(rgb):
		merger = accumulator.blank_of(backend, 7, 5)
		try:
			merger.add(image)
			average = merger.to_average_and_reset()
		finally:
			merger.close()
		assert average.pixel_format is imaging.PixelFormat.RGB24
		assert numpy.array_equal(average.pixels, rgb), image.pixel_format.name

#============================================

@pytest.mark.parametrize("backend", BACKENDS)
def test_average_of_two_frames(backend: str) -> None:
	merger = accumulator.blank_of(backend, 4, 3)
	try:
		merger.add(imaging.from_rgb_array(solid_frame(4, 3, (10, 100, 200))))
		merger.add(imaging.from_rgb_array(solid_frame(4, 3, (30, 50, 0))))
		assert merger.num_added == 2
		average = merger.to_average_and_reset()
		assert merger.num_added == 0
	finally:
		merger.close()
	assert average.pixels[0, 0].tolist() == [20, 75, 100]
	assert average.pixels.shape == (3, 4, 3)

#============================================

@pytest.mark.parametrize("backend", BACKENDS)
def test_reset_between_groups(backend: str) -> None:
	merger = accumulator.blank_of(backend, 2, 2)
	try:
		merger.add(imaging.from_rgb_array(solid_frame(2, 2, (200, 200, 200))))
		merger.to_average_and_reset()
		merger.add(imaging.from_rgb_array(solid_frame(2, 2, (4, 8, 16))))
		average = merger.to_average_and_reset()
	finally:
		merger.close()
	assert average.pixels[1, 1].tolist() == [4, 8, 16]

#============================================

@pytest.mark.parametrize("backend", BACKENDS)
def test_size_mismatch_raises(backend: str) -> None:
	merger = accumulator.blank_of(backend, 4, 4)
	try:
		with pytest.raises(InvalidInputError):
			merger.add(imaging.from_rgb_array(solid_frame(4, 5, (0, 0, 0))))
	finally:
		merger.close()

#============================================

@pytest.mark.parametrize("backend", BACKENDS)
def test_empty_average_raises(backend: str) -> None:
	merger = accumulator.blank_of(backend, 2, 2)
	try:
		with pytest.raises(SmushError):
			merger.to_average_and_reset()
	finally:
		merger.close()

#============================================

def test_gray_frames_fill_all_channels() -> None:
	gray = numpy.arange(6, dtype=numpy.uint8).reshape(2, 3) * 40
	merger = CpuAccumulator(3, 2)
	try:
		merger.add(imaging.DecodedImage(gray, imaging.PixelFormat.GRAY8))
		average = merger.to_average_and_reset()
	finally:
		merger.close()
	for channel in range(3):
		assert numpy.array_equal(average.pixels[:, :, channel], gray)

#============================================

def test_overflow_guard_small_sums() -> None:
	"""int16 sums hold 128 full-white adds; the next one must fail."""
	white = imaging.from_rgb_array(solid_frame(2, 2, (255, 255, 255)))
	merger = CpuAccumulator(2, 2, sum_dtype=numpy.int16)
	try:
		assert merger.max_adds == 32767 // 255
		for _ in range(merger.max_adds):
			merger.add(white)
		with pytest.raises(OverflowError):
			merger.add(white)
		with pytest.raises(AccumulatorOverflowError):
			merger.add(white)
		average = merger.to_average_and_reset()
	finally:
		merger.close()
	assert average.pixels[0, 0].tolist() == [255, 255, 255]

#============================================

def test_overflow_guard_int32() -> None:
	limit = numpy.iinfo(numpy.int32).max // 255
	merger = CpuAccumulator(1, 1)
	try:
		assert merger.max_adds == limit
		merger.num_added = limit
		with pytest.raises(AccumulatorOverflowError):
			merger.add(imaging.from_rgb_array(solid_frame(1, 1, (1, 2, 3))))
	finally:
		merger.close()

#============================================

def test_unsupported_layout_rejected() -> None:
	with pytest.raises(UnsupportedPixelLayoutError):
		imaging.DecodedImage(numpy.zeros((2, 2, 3), dtype=numpy.uint8), "YUV420")

#============================================

def test_bad_buffer_shape_rejected() -> None:
	with pytest.raises(InvalidInputError):
		imaging.DecodedImage(numpy.zeros((2, 2, 3), dtype=numpy.uint8), imaging.PixelFormat.RGBA)
	with pytest.raises(InvalidInputError):
		imaging.DecodedImage(numpy.zeros((2, 2), dtype=numpy.uint16), imaging.PixelFormat.GRAY8)

#============================================

def test_decoded_pixels_are_read_only() -> None:
	image = imaging.from_rgb_array(solid_frame(2, 2, (1, 2, 3)))
	with pytest.raises(ValueError):
		image.pixels[0, 0, 0] = 9

#============================================

def test_caller_array_stays_writable() -> None:
	rgb = solid_frame(2, 2, (1, 2, 3))
	image = imaging.DecodedImage(rgb, imaging.PixelFormat.RGB24)
	rgb[0, 0, 0] = 9
	assert rgb.flags.writeable
	assert not image.pixels.flags.writeable
	assert image.pixels[0, 0, 0] == 9

#============================================

def test_closed_accumulator_rejects_adds() -> None:
	merger = CpuAccumulator(2, 2)
	merger.close()
	with pytest.raises(SmushError):
		merger.add(imaging.from_rgb_array(solid_frame(2, 2, (0, 0, 0))))

#============================================

def test_unknown_backend() -> None:
	with pytest.raises(SmushError):
		accumulator.blank_of("metal", 2, 2)

#============================================

def test_bad_dimensions() -> None:
	with pytest.raises(InvalidInputError):
		accumulator.blank_of("cpu", 0, 2)

#============================================

def test_opencv_rounds_to_nearest() -> None:
	pytest.importorskip("cv2")
	merger = accumulator.blank_of("opencv", 1, 1)
	try:
		merger.add(imaging.from_rgb_array(solid_frame(1, 1, (0, 0, 0))))
		merger.add(imaging.from_rgb_array(solid_frame(1, 1, (3, 3, 3))))
		average = merger.to_average_and_reset()
	finally:
		merger.close()
	# 1.5 rounds to 2 in OpenCV, the cpu backend floors to 1
	assert average.pixels[0, 0].tolist() == [2, 2, 2]

#============================================

def test_torch_cpu_device() -> None:
	pytest.importorskip("torch")
	merger = accumulator.blank_of("torch", 3, 2, device="cpu")
	try:
		assert merger.device.type == "cpu"
		rgb = rgb_frame(3, 2, seed=5)
		merger.add(imaging.from_rgb_array(rgb))
		merger.add(imaging.from_rgb_array(rgb))
		average = merger.to_average_and_reset()
	finally:
		merger.close()
	assert numpy.array_equal(average.pixels, rgb)
