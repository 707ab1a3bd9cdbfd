#!/usr/bin/env python3

"""
torch_backend.py

GPU accumulator. The running sum is a flat int32 buffer on the device laid
out as [r0, g0, b0, r1, g1, b1, ...]. Raw frame buffers (bytes or packed
words) are uploaded as-is and the channel split happens on the device; the
sums come back to the host only when an average is requested.
"""

# Standard Library
import threading

# PIP3 modules
import numpy
import torch

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.analysis import imaging
from smushlib.core import utils
from smushlib.core.errors import AccumulatorOverflowError
from smushlib.core.errors import SmushError

CHANNEL_MAX = 255

#============================================

def pick_device(device: str = None) -> torch.device:
	if device is None or device == "auto":
		if torch.cuda.is_available():
			return torch.device("cuda")
		return torch.device("cpu")
	return torch.device(device)

#============================================

class TorchAccumulator():
	def __init__(self, width: int, height: int, device: str = None):
		accumulator.check_dimensions(width, height)
		self.width = int(width)
		self.height = int(height)
		self.device = pick_device(device)
		self.max_adds = int(torch.iinfo(torch.int32).max) // CHANNEL_MAX
		self.num_added = 0
		self._sums = torch.zeros(self.width * self.height * 3, dtype=torch.int32,
			device=self.device)
		self._lock = threading.Lock()
		self._closed = False
		utils.log(f"torch accumulator on {self.device} ({self.width}x{self.height})")

	#============================
	@classmethod
	def blank_of(cls, width: int, height: int, **options) -> "TorchAccumulator":
		return cls(width, height, **options)

	#============================
	def add(self, image: imaging.DecodedImage) -> None:
		with self._lock:
			self._check_open()
			accumulator.check_frame_size(self, image)
			if self.num_added >= self.max_adds:
				raise AccumulatorOverflowError(
					f"int32 sums would overflow after {self.num_added} adds, flush sooner")
			red, green, blue = self._device_channels(image)
			sums = self._sums.view(-1, 3)
			sums[:, 0] += red
			sums[:, 1] += green
			sums[:, 2] += blue
			self.num_added += 1

	#============================
	def _device_channels(self, image: imaging.DecodedImage) -> tuple:
		pixel_format = image.pixel_format
		red_at, green_at, blue_at = pixel_format.offsets
		if pixel_format.kind == "bytes":
			data = self._upload(image.pixels.reshape(-1))
			pixels = data.view(-1, pixel_format.step).to(torch.int32)
			return (pixels[:, red_at], pixels[:, green_at], pixels[:, blue_at])
		if pixel_format.kind == "packed":
			# reinterpret as int32; the & 0xFF mask makes the sign bit irrelevant
			words = self._upload(image.pixels.view(numpy.int32).reshape(-1))
			return ((words >> red_at) & 0xFF, (words >> green_at) & 0xFF, (words >> blue_at) & 0xFF)
		gray = self._upload(image.pixels.reshape(-1)).to(torch.int32)
		return (gray, gray, gray)

	#============================
	def _upload(self, array: numpy.ndarray) -> torch.Tensor:
		# frames are read-only; torch wants a writable host buffer
		return torch.from_numpy(numpy.array(array)).to(self.device)

	#============================
	def to_average_and_reset(self) -> imaging.DecodedImage:
		with self._lock:
			self._check_open()
			if self.num_added == 0:
				raise SmushError("no frames added since the last average")
			average = torch.div(self._sums, self.num_added, rounding_mode="floor")
			average = average.clamp(0, CHANNEL_MAX).to(torch.uint8)
			rgb = average.view(self.height, self.width, 3).cpu().numpy()
			self._sums.zero_()
			self.num_added = 0
			return imaging.from_rgb_array(rgb)

	#============================
	def close(self) -> None:
		with self._lock:
			if self._closed:
				return
			self._closed = True
			self._sums = None
			if self.device.type == "cuda":
				torch.cuda.empty_cache()

	#============================
	def _check_open(self) -> None:
		if self._closed:
			raise SmushError("accumulator is closed")
