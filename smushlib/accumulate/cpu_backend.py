#!/usr/bin/env python3

"""
cpu_backend.py

Reference accumulator: one integer plane per color channel.

Each add fans out into three jobs, one per channel, on a small thread pool
owned by the accumulator. The planes never overlap and every job is joined
before add() returns, so the average always reads complete sums.
"""

# Standard Library
import threading
from concurrent.futures import ThreadPoolExecutor

# PIP3 modules
import numpy

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.analysis import imaging
from smushlib.core.errors import AccumulatorOverflowError
from smushlib.core.errors import SmushError

CHANNEL_MAX = 255

#============================================

class CpuAccumulator():
	def __init__(self, width: int, height: int, sum_dtype=numpy.int32,
		executor: ThreadPoolExecutor = None):
		accumulator.check_dimensions(width, height)
		self.width = int(width)
		self.height = int(height)
		self.sum_dtype = numpy.dtype(sum_dtype)
		if self.sum_dtype.kind not in ("i", "u"):
			raise SmushError("cpu accumulator needs an integer sum dtype")
		self.max_adds = int(numpy.iinfo(self.sum_dtype).max) // CHANNEL_MAX
		self.num_added = 0
		shape = (self.height, self.width)
		self.red = numpy.zeros(shape, dtype=self.sum_dtype)
		self.green = numpy.zeros(shape, dtype=self.sum_dtype)
		self.blue = numpy.zeros(shape, dtype=self.sum_dtype)
		self._lock = threading.Lock()
		self._owns_executor = executor is None
		if executor is None:
			executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="smush-channel")
		self._executor = executor
		self._closed = False

	#============================
	@classmethod
	def blank_of(cls, width: int, height: int, **options) -> "CpuAccumulator":
		return cls(width, height, **options)

	#============================
	def add(self, image: imaging.DecodedImage) -> None:
		with self._lock:
			self._check_open()
			accumulator.check_frame_size(self, image)
			if self.num_added >= self.max_adds:
				raise AccumulatorOverflowError(
					f"{self.sum_dtype.name} sums would overflow after {self.num_added} adds, flush sooner")
			planes = imaging.channel_planes(image)
			jobs = []
			for total, plane in zip((self.red, self.green, self.blue), planes):
				jobs.append(self._executor.submit(numpy.add, total, plane, out=total))
			for job in jobs:
				job.result()
			self.num_added += 1

	#============================
	def to_average_and_reset(self) -> imaging.DecodedImage:
		"""
		Average every plane by the frame count, then zero the sums.
		"""
		with self._lock:
			self._check_open()
			if self.num_added == 0:
				raise SmushError("no frames added since the last average")
			rgb = numpy.empty((self.height, self.width, 3), dtype=numpy.uint8)
			for channel, total in enumerate((self.red, self.green, self.blue)):
				rgb[:, :, channel] = total // self.num_added
				total.fill(0)
			self.num_added = 0
			return imaging.from_rgb_array(rgb)

	#============================
	def close(self) -> None:
		with self._lock:
			if self._closed:
				return
			self._closed = True
			if self._owns_executor:
				self._executor.shutdown(wait=True)
			self.red = None
			self.green = None
			self.blue = None

	#============================
	def _check_open(self) -> None:
		if self._closed:
			raise SmushError("accumulator is closed")
