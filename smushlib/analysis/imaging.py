#!/usr/bin/env python3

"""
imaging.py

Decoded frames and the pixel layouts they can arrive in.

A DecodedImage is a numpy buffer plus the PixelFormat that says how to read it.
Byte layouts are (height, width, step) uint8 arrays, packed layouts are
(height, width) uint32 arrays, GRAY8 is a (height, width) uint8 array.
Alpha is never part of the channel planes.
"""

# Standard Library
import enum
from dataclasses import dataclass

# PIP3 modules
import numpy
import PIL.Image

# local repo modules
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import UnsupportedPixelLayoutError

#============================================

class PixelFormat(enum.Enum):
	# name = (kind, step, red, green, blue, alpha)
	# byte kinds index into the pixel; packed kinds are bit shifts
	RGB24 = ("bytes", 3, 0, 1, 2, False)
	BGR24 = ("bytes", 3, 2, 1, 0, False)
	RGBA = ("bytes", 4, 0, 1, 2, True)
	BGRA = ("bytes", 4, 2, 1, 0, True)
	ARGB = ("bytes", 4, 1, 2, 3, True)
	ABGR = ("bytes", 4, 3, 2, 1, True)
	INT_RGB = ("packed", 1, 16, 8, 0, False)
	INT_ARGB = ("packed", 1, 16, 8, 0, True)
	INT_BGR = ("packed", 1, 0, 8, 16, False)
	GRAY8 = ("gray", 1, 0, 0, 0, False)

	#============================
	@property
	def kind(self) -> str:
		return self.value[0]

	#============================
	@property
	def step(self) -> int:
		return self.value[1]

	#============================
	@property
	def offsets(self) -> tuple:
		return self.value[2:5]

	#============================
	@property
	def has_alpha(self) -> bool:
		return self.value[5]

#============================================

def _check_format(pixel_format) -> PixelFormat:
	if not isinstance(pixel_format, PixelFormat):
		raise UnsupportedPixelLayoutError(f"unsupported pixel layout: {pixel_format!r}")
	return pixel_format

#============================================

@dataclass(frozen=True)
class DecodedImage():
	pixels: numpy.ndarray
	pixel_format: PixelFormat = PixelFormat.RGB24

	def __post_init__(self):
		pixel_format = _check_format(self.pixel_format)
		pixels = self.pixels
		if not isinstance(pixels, numpy.ndarray):
			raise InvalidInputError("image pixels must be a numpy array")
		if pixel_format.kind == "bytes":
			if pixels.ndim != 3 or pixels.shape[2] != pixel_format.step:
				raise InvalidInputError(
					f"{pixel_format.name} needs shape (h, w, {pixel_format.step}), got {pixels.shape}")
			if pixels.dtype != numpy.uint8:
				raise InvalidInputError(f"{pixel_format.name} needs uint8 data")
		elif pixel_format.kind == "packed":
			if pixels.ndim != 2 or pixels.dtype != numpy.uint32:
				raise InvalidInputError(f"{pixel_format.name} needs a 2D uint32 array")
		else:
			if pixels.ndim != 2 or pixels.dtype != numpy.uint8:
				raise InvalidInputError("GRAY8 needs a 2D uint8 array")
		if pixels.shape[0] == 0 or pixels.shape[1] == 0:
			raise InvalidInputError("image has no pixels")
		# freeze a view so the caller keeps a writable array
		pixels = pixels.view()
		pixels.setflags(write=False)
		object.__setattr__(self, "pixels", pixels)

	#============================
	@property
	def width(self) -> int:
		return int(self.pixels.shape[1])

	#============================
	@property
	def height(self) -> int:
		return int(self.pixels.shape[0])

	#============================
	@property
	def is_gray(self) -> bool:
		return self.pixel_format.kind == "gray"

#============================================

def channel_planes(image: DecodedImage) -> tuple:
	"""
	Extract red, green and blue planes from any supported layout.

	Args:
		image: Decoded image.

	Returns:
		tuple: (red, green, blue) uint8 arrays of shape (height, width).
	"""
	pixel_format = _check_format(image.pixel_format)
	data = image.pixels
	red_at, green_at, blue_at = pixel_format.offsets
	if pixel_format.kind == "bytes":
		return (data[:, :, red_at], data[:, :, green_at], data[:, :, blue_at])
	if pixel_format.kind == "packed":
		red = ((data >> red_at) & 0xFF).astype(numpy.uint8)
		green = ((data >> green_at) & 0xFF).astype(numpy.uint8)
		blue = ((data >> blue_at) & 0xFF).astype(numpy.uint8)
		return (red, green, blue)
	return (data, data, data)

#============================================

def to_rgb_array(image: DecodedImage) -> numpy.ndarray:
	if image.pixel_format is PixelFormat.RGB24:
		return image.pixels
	return numpy.stack(channel_planes(image), axis=2)

#============================================

def from_rgb_array(rgb: numpy.ndarray) -> DecodedImage:
	return DecodedImage(numpy.ascontiguousarray(rgb, dtype=numpy.uint8), PixelFormat.RGB24)

#============================================

def pack_int_rgb(rgb: numpy.ndarray, alpha: int = 0) -> numpy.ndarray:
	"""Pack an (h, w, 3) array into 0xAARRGGBB words."""
	rgb32 = rgb.astype(numpy.uint32)
	packed = (rgb32[:, :, 0] << 16) | (rgb32[:, :, 1] << 8) | rgb32[:, :, 2]
	return packed | numpy.uint32((alpha & 0xFF) << 24)

#============================================

def from_pil(image: PIL.Image.Image) -> DecodedImage:
	"""
	Convert a PIL image, keeping gray images as GRAY8.
	"""
	if image.mode == "L":
		return DecodedImage(numpy.array(image, dtype=numpy.uint8), PixelFormat.GRAY8)
	if image.mode == "RGBA":
		return DecodedImage(numpy.array(image, dtype=numpy.uint8), PixelFormat.RGBA)
	if image.mode != "RGB":
		image = image.convert("RGB")
	return DecodedImage(numpy.array(image, dtype=numpy.uint8), PixelFormat.RGB24)

#============================================

def to_pil(image: DecodedImage) -> PIL.Image.Image:
	if image.is_gray:
		return PIL.Image.fromarray(numpy.ascontiguousarray(image.pixels))
	return PIL.Image.fromarray(numpy.ascontiguousarray(to_rgb_array(image)))

#============================================

def load_image(filepath: str) -> DecodedImage:
	try:
		with PIL.Image.open(filepath) as handle:
			handle.load()
			return from_pil(handle)
	except OSError as exc:
		raise InvalidInputError(f"unreadable image {filepath}: {exc}") from exc
