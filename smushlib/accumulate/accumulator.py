#!/usr/bin/env python3

"""
accumulator.py

The frame accumulator capability and the factory that picks a backend.

Every backend keeps a running per-pixel sum of the frames added since the last
reset and hands back their average on `to_average_and_reset()`:

	width, height, num_added
	add(image)                  fold one DecodedImage into the sum
	to_average_and_reset()      averaged RGB24 DecodedImage, then zero the sum
	close()                     release backend resources

Backends are interchangeable; they differ only in where the sum lives.
"""

# Standard Library
import importlib
from typing import Protocol

# local repo modules
from smushlib.analysis import imaging
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import SmushError

BACKENDS = {
	"cpu": ("smushlib.accumulate.cpu_backend", "CpuAccumulator"),
	"torch": ("smushlib.accumulate.torch_backend", "TorchAccumulator"),
	"opencv": ("smushlib.accumulate.opencv_backend", "OpenCvAccumulator"),
}

#============================================

class FrameAccumulator(Protocol):
	width: int
	height: int
	num_added: int

	def add(self, image: imaging.DecodedImage) -> None:
		...

	def to_average_and_reset(self) -> imaging.DecodedImage:
		...

	def close(self) -> None:
		...

#============================================

def backend_class(backend: str):
	if backend not in BACKENDS:
		raise SmushError(f"unknown accumulator backend: {backend} (choose from {', '.join(BACKENDS)})")
	module_name, class_name = BACKENDS[backend]
	module = importlib.import_module(module_name)
	return getattr(module, class_name)

#============================================

def blank_of(backend: str, width: int, height: int, **options) -> FrameAccumulator:
	"""
	Create an empty accumulator of the given size.

	Args:
		backend: One of BACKENDS.
		width: Frame width in pixels.
		height: Frame height in pixels.
		**options: Backend specific keyword arguments.

	Returns:
		FrameAccumulator: Empty accumulator.
	"""
	return backend_class(backend).blank_of(width, height, **options)

#============================================

def check_frame_size(accumulator, image: imaging.DecodedImage) -> None:
	if image.width != accumulator.width or image.height != accumulator.height:
		raise InvalidInputError(
			f"frame is {image.width}x{image.height}, accumulator is "
			f"{accumulator.width}x{accumulator.height}")
	return

#============================================

def check_dimensions(width: int, height: int) -> None:
	if int(width) < 1 or int(height) < 1:
		raise InvalidInputError(f"accumulator size must be positive, got {width}x{height}")
	return
