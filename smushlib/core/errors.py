#!/usr/bin/env python3

#============================================

class SmushError(RuntimeError):
	pass

#============================================

class InvalidInputError(SmushError, ValueError):
	"""Mismatched or malformed fingerprints and image buffers."""
	pass

#============================================

class AccumulatorOverflowError(SmushError, OverflowError):
	"""Another add would push a channel sum past the accumulator's integer range."""
	pass

#============================================

class UnsupportedPixelLayoutError(SmushError):
	pass

#============================================

class ScheduleError(SmushError):
	pass

#============================================

class EmptyScheduleError(ScheduleError):
	pass

#============================================

class ScheduleOrderError(ScheduleError):
	pass

#============================================

class ScheduleRateError(ScheduleError):
	pass

#============================================

class FrameSourceError(SmushError):
	pass

#============================================

class ConfigError(SmushError):
	pass
