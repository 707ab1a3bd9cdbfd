#!/usr/bin/env python3

# Standard Library
import hashlib
import json
import os
import shlex
import shutil
import subprocess
import time
from decimal import Decimal
from fractions import Fraction

# PIP3 modules
from tqdm import tqdm

_QUIET_MODE = False

#============================================

def set_quiet_mode(value: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(value)
	return

#============================================

def is_quiet_mode() -> bool:
	return _QUIET_MODE

#============================================

def log(message: str) -> None:
	if not _QUIET_MODE:
		print(message)
	return

#============================================

def progress(iterable, total: int = None, desc: str = None, unit: str = "frame"):
	"""
	Wrap an iterable in a tqdm bar unless quiet mode is on.
	"""
	if _QUIET_MODE:
		return iterable
	return tqdm(iterable, total=total, desc=desc, unit=unit)

#============================================

def check_dependency(cmd_name: str) -> None:
	"""
	Ensure a required external command exists.

	Args:
		cmd_name: Command to locate.
	"""
	if shutil.which(cmd_name) is None:
		raise RuntimeError(f"missing dependency: {cmd_name}")
	return

#============================================

def run_process(cmd: list, cwd: str = None,
	capture_output: bool = True, text: bool = True) -> subprocess.CompletedProcess:
	"""
	Run a subprocess command.

	Args:
		cmd: Command list to execute.
		cwd: Working directory.
		capture_output: Capture stdout and stderr when True.
		text: Decode output as text, False keeps bytes.

	Returns:
		subprocess.CompletedProcess: Completed process.
	"""
	showcmd = shlex.join(cmd)
	log(f"CMD: '{showcmd}'")
	proc = subprocess.run(cmd, cwd=cwd, capture_output=capture_output, text=text)
	if proc.returncode != 0:
		stderr_text = ""
		if proc.stderr is not None:
			stderr_text = proc.stderr
			if isinstance(stderr_text, bytes):
				stderr_text = stderr_text.decode("utf-8", errors="replace")
			stderr_text = stderr_text.strip()
		raise RuntimeError(f"command failed: {showcmd}\n{stderr_text}")
	return proc

#============================================

def parse_fps(raw_fps) -> Fraction:
	if raw_fps is None:
		raise RuntimeError("fps is required")
	if isinstance(raw_fps, bool):
		raise RuntimeError("fps must be int, float, or fraction string")
	if isinstance(raw_fps, Fraction):
		return raw_fps
	if isinstance(raw_fps, int):
		return Fraction(raw_fps, 1)
	if isinstance(raw_fps, float):
		return Fraction(str(raw_fps))
	if isinstance(raw_fps, str):
		if '/' in raw_fps:
			parts = raw_fps.split('/')
			if int(parts[1]) == 0:
				raise RuntimeError("invalid fps denominator")
			return Fraction(int(parts[0]), int(parts[1]))
		return Fraction(raw_fps)
	raise RuntimeError("fps must be int, float, or fraction string")

#============================================

def parse_timecode(raw_time) -> Decimal:
	if raw_time is None:
		raise RuntimeError("time value is required")
	if isinstance(raw_time, int):
		return Decimal(raw_time)
	if isinstance(raw_time, float):
		return Decimal(str(raw_time))
	if isinstance(raw_time, str):
		value = raw_time.strip()
		if ':' not in value:
			return Decimal(value)
		parts = value.split(':')
		if len(parts) > 3:
			raise RuntimeError(f"bad timecode: {raw_time}")
		seconds = Decimal(parts.pop())
		minutes = Decimal(parts.pop())
		hours = Decimal(0)
		if len(parts) > 0:
			hours = Decimal(parts.pop())
		return hours * Decimal(3600) + minutes * Decimal(60) + seconds
	raise RuntimeError("time values must be int, float, or timecode string")

#============================================

def frames_from_seconds(seconds: Decimal, fps: Fraction) -> Fraction:
	"""
	Exact (unrounded) frame count for a duration.
	"""
	return Fraction(str(seconds)) * fps

#============================================

def round_half_up_fraction(value: Fraction) -> int:
	numerator = value.numerator
	denominator = value.denominator
	whole = numerator // denominator
	remainder = numerator - (whole * denominator)
	if remainder * 2 >= denominator:
		return whole + 1
	return whole

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.isfile(filepath):
		raise RuntimeError(f"file not found: {filepath}")
	return

#============================================

def file_identity(filepath: str) -> dict:
	"""
	Identify a file by path, size and modification time.
	"""
	stat = os.stat(filepath)
	return {
		"path": os.path.abspath(filepath),
		"size": int(stat.st_size),
		"mtime_ns": int(stat.st_mtime_ns),
	}

#============================================

def stable_hash_mapping(data: dict) -> str:
	"""
	Hash a mapping deterministically to a hex string.

	Args:
		data: Mapping to hash.

	Returns:
		str: Hex digest (sha256).
	"""
	text = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
	return hashlib.sha256(text.encode("utf-8")).hexdigest()

#============================================

def format_duration(seconds: float) -> str:
	if seconds < 60:
		return f"{seconds:.1f}s"
	minutes, secs = divmod(seconds, 60)
	if minutes < 60:
		return f"{int(minutes)}m {secs:04.1f}s"
	hours, minutes = divmod(minutes, 60)
	return f"{int(hours)}h {int(minutes):02d}m {secs:04.1f}s"

#============================================

class RateLogger():
	"""
	Print a line every `every` hits with the observed rate.
	"""
	def __init__(self, every: int = 5000, label: str = "input frames"):
		self.every = every
		self.label = label
		self.count = 0
		self._window_start = time.time()

	#============================
	def hit(self) -> None:
		self.count += 1
		if self.count % self.every != 0:
			return
		now = time.time()
		elapsed = max(now - self._window_start, 1e-9)
		rate = self.every / elapsed
		self._window_start = now
		log(f"Processed {self.count} {self.label} ({rate:.0f}/sec)")
