#!/usr/bin/env python3

"""
smoothing.py

Noise suppression and shaping for activity score series.

Savitzky-Golay smoothing fits a low-degree polynomial to a window around each
point and keeps the fitted value, which follows sustained bursts of action
without flattening their peaks the way a moving average does.
"""

# PIP3 modules
import numpy
import scipy.signal

# local repo modules
from smushlib.core.errors import InvalidInputError

#============================================

class SavitzkyGolayFilter():
	def __init__(self, window_size: int = 5, polynomial_degree: int = 2):
		if window_size < 1 or window_size % 2 == 0:
			raise InvalidInputError(f"smoothing window must be a positive odd number, got {window_size}")
		if polynomial_degree < 0:
			raise InvalidInputError("polynomial degree must be >= 0")
		if polynomial_degree >= window_size:
			raise InvalidInputError("polynomial degree must be smaller than the window")
		self.window_size = window_size
		self.polynomial_degree = polynomial_degree

	#============================
	def smooth(self, data) -> numpy.ndarray:
		"""
		Smooth a series, same length out as in.

		Series shorter than the window come back unchanged. Near the ends the
		window is clipped to the data and the fit is evaluated at the point
		itself.
		"""
		values = numpy.asarray(data, dtype=numpy.float64)
		count = values.size
		if count < self.window_size:
			return values.copy()
		half = self.window_size // 2
		smoothed = scipy.signal.savgol_filter(values, self.window_size,
			self.polynomial_degree, mode="interp")
		edge_indexes = list(range(0, half)) + list(range(count - half, count))
		for index in edge_indexes:
			smoothed[index] = self._fit_clipped(values, index, half)
		return smoothed

	#============================
	def _fit_clipped(self, values: numpy.ndarray, index: int, half: int) -> float:
		start = max(0, index - half)
		end = min(values.size - 1, index + half)
		window = values[start:end + 1]
		if window.size < self.polynomial_degree + 1:
			return float(window.mean())
		offsets = numpy.arange(start, end + 1, dtype=numpy.float64) - index
		coefficients = numpy.polyfit(offsets, window, self.polynomial_degree)
		# constant term is the fitted value at offset 0
		return float(coefficients[-1])

#============================================

def savitzky_golay_smooth(data, window_size: int = 5, polynomial_degree: int = 2) -> numpy.ndarray:
	return SavitzkyGolayFilter(window_size, polynomial_degree).smooth(data)

#============================================

def _is_flat(values: numpy.ndarray, span: float) -> bool:
	# smoothing leaves float noise on flat input; do not stretch it to 0..1
	return span <= 1e-12 * max(1.0, float(numpy.abs(values).max()))

#============================================

def normalize(data) -> numpy.ndarray:
	"""Rescale so the smallest value is 0.0 and the largest is 1.0."""
	values = numpy.asarray(data, dtype=numpy.float64)
	if values.size == 0:
		return values.copy()
	low = values.min()
	span = values.max() - low
	if _is_flat(values, span):
		return numpy.zeros_like(values)
	return (values - low) / span

#============================================

def scale(data, low: float, high: float) -> numpy.ndarray:
	"""Linearly map the data range onto [low, high]."""
	values = numpy.asarray(data, dtype=numpy.float64)
	if values.size == 0:
		return values.copy()
	data_low = values.min()
	span = values.max() - data_low
	if _is_flat(values, span):
		return numpy.full_like(values, float(low))
	return low + (values - data_low) * (high - low) / span

#============================================

def enhance_variability(data, exponent: float, min_merge: int = 1,
	max_merge: int = 100, invert: bool = False) -> numpy.ndarray:
	"""
	Turn smoothed scores into per-frame merge counts.

	Normalize to 0..1, raise to `exponent` (> 1 makes quiet stretches quieter
	and busy stretches dominate), then scale into [min_merge, max_merge].

	Args:
		data: Smoothed score series.
		exponent: Power curve exponent.
		min_merge: Fewest frames merged into one (1 means real speed).
		max_merge: Most frames merged into one.
		invert: Map the quietest frames to max_merge instead of min_merge.

	Returns:
		numpy.ndarray: int64 merge counts, truncated toward zero.
	"""
	if exponent <= 0:
		raise InvalidInputError("variability exponent must be > 0")
	if min_merge < 1:
		raise InvalidInputError("min_merge must be >= 1")
	if max_merge < min_merge:
		raise InvalidInputError("max_merge must be >= min_merge")
	shaped = numpy.power(normalize(data), exponent)
	if invert:
		shaped = 1.0 - shaped
	scaled = scale(shaped, float(min_merge), float(max_merge))
	counts = numpy.trunc(scaled).astype(numpy.int64)
	return numpy.clip(counts, min_merge, max_merge)
