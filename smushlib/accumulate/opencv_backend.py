#!/usr/bin/env python3

"""
opencv_backend.py

Accumulator built on OpenCV's float accumulate: sum into a float64 image,
then scale by 1/count and convert back to 8 bits (rounded, saturated).
"""

# Standard Library
import threading

# PIP3 modules
import cv2
import numpy

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.analysis import imaging
from smushlib.core.errors import AccumulatorOverflowError
from smushlib.core.errors import SmushError

# float64 holds integers exactly up to 2**53
EXACT_FLOAT_LIMIT = 2 ** 53

#============================================

class OpenCvAccumulator():
	def __init__(self, width: int, height: int):
		accumulator.check_dimensions(width, height)
		self.width = int(width)
		self.height = int(height)
		self.max_adds = EXACT_FLOAT_LIMIT // 255
		self.num_added = 0
		self._accumulator = numpy.zeros((self.height, self.width, 3), dtype=numpy.float64)
		self._lock = threading.Lock()
		self._closed = False

	#============================
	@classmethod
	def blank_of(cls, width: int, height: int, **options) -> "OpenCvAccumulator":
		return cls(width, height, **options)

	#============================
	def add(self, image: imaging.DecodedImage) -> None:
		with self._lock:
			self._check_open()
			accumulator.check_frame_size(self, image)
			if self.num_added >= self.max_adds:
				raise AccumulatorOverflowError(f"float sums lose precision after {self.num_added} adds")
			rgb = numpy.array(imaging.to_rgb_array(image), order="C")
			cv2.accumulate(rgb, self._accumulator)
			self.num_added += 1

	#============================
	def to_average_and_reset(self) -> imaging.DecodedImage:
		with self._lock:
			self._check_open()
			if self.num_added == 0:
				raise SmushError("no frames added since the last average")
			average = cv2.convertScaleAbs(self._accumulator, alpha=1.0 / self.num_added)
			self._accumulator.fill(0.0)
			self.num_added = 0
			return imaging.from_rgb_array(average)

	#============================
	def close(self) -> None:
		with self._lock:
			self._closed = True
			self._accumulator = None

	#============================
	def _check_open(self) -> None:
		if self._closed:
			raise SmushError("accumulator is closed")
