#!/usr/bin/env python3

"""
ffmpeg_frames.py

Frame source and frame sink on top of the ffmpeg command line tools.

The source decodes a video (optionally through a -vf filter chain) into raw
rgb24 frames read from a pipe. The sink pipes raw rgb24 frames into an
encoder; the first frame fixes the output size.
"""

# Standard Library
import io
import json
import shlex
import subprocess
import tempfile

# PIP3 modules
import numpy
import PIL.Image

# local repo modules
from smushlib.analysis import imaging
from smushlib.core import utils
from smushlib.core.errors import FrameSourceError
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import SmushError

# center quarter of the frame, shrunk to a thumbnail
THUMBNAIL_FILTER = "crop=in_w*.5:in_h*.5:in_w*.25:in_h*.25,scale=32:32"

#============================================

def probe_video_stream(input_file: str) -> dict:
	"""
	Probe video stream metadata using ffprobe.

	Args:
		input_file: Media file path.

	Returns:
		dict: width, height, fps (Fraction), pix_fmt and nb_frames (or None).
	"""
	utils.ensure_file_exists(input_file)
	cmd = [
		"ffprobe", "-v", "error",
		"-select_streams", "v:0",
		"-show_entries", "stream=width,height,r_frame_rate,avg_frame_rate,pix_fmt,nb_frames",
		"-of", "json",
		input_file,
	]
	proc = utils.run_process(cmd, capture_output=True)
	data = json.loads(proc.stdout)
	streams = data.get("streams", [])
	if len(streams) == 0:
		raise FrameSourceError(f"no video stream found in {input_file}")
	stream = streams[0]
	width = int(stream.get("width", 0))
	height = int(stream.get("height", 0))
	if width <= 0 or height <= 0:
		raise FrameSourceError("invalid video resolution from ffprobe")
	fps_value = stream.get("r_frame_rate")
	if fps_value is None or fps_value == "0/0":
		fps_value = stream.get("avg_frame_rate")
	if fps_value is None or fps_value == "0/0":
		raise FrameSourceError("invalid frame rate from ffprobe")
	nb_frames = stream.get("nb_frames")
	if nb_frames is not None and str(nb_frames).isdigit():
		nb_frames = int(nb_frames)
	else:
		nb_frames = None
	return {
		"width": width,
		"height": height,
		"fps": utils.parse_fps(fps_value),
		"pix_fmt": stream.get("pix_fmt", "yuv420p"),
		"nb_frames": nb_frames,
	}

#============================================

def filter_crop(left: int, right: int, top: int, bottom: int, force_even: bool = True) -> str:
	"""
	Build an ffmpeg crop expression that trims pixels from each edge.

	Args:
		left: Pixels removed on the left.
		right: Pixels removed on the right.
		top: Pixels removed on top.
		bottom: Pixels removed at the bottom.
		force_even: Round the output size down to even numbers (needed by yuv420p).

	Returns:
		str: Filter expression.
	"""
	for value in (left, right, top, bottom):
		if int(value) < 0:
			raise InvalidInputError("crop margins must be >= 0")
	width = f"in_w-{int(left) + int(right)}"
	height = f"in_h-{int(top) + int(bottom)}"
	if force_even:
		width = f"trunc(({width})/2)*2"
		height = f"trunc(({height})/2)*2"
	return f"crop={width}:{height}:{int(left)}:{int(top)}"

#============================================

def join_filters(*filters) -> str:
	parts = [text for text in filters if text]
	if len(parts) == 0:
		return None
	return ",".join(parts)

#============================================

def format_rate(fps) -> str:
	rate = utils.parse_fps(fps)
	if rate.denominator == 1:
		return str(rate.numerator)
	return f"{rate.numerator}/{rate.denominator}"

#============================================

def decode_command(input_file: str, video_filter: str = None, max_frames: int = None,
	output_format: str = "rawvideo") -> list:
	cmd = ["ffmpeg", "-hide_banner", "-nostdin", "-v", "error", "-i", input_file, "-an", "-sn"]
	if video_filter:
		cmd.extend(["-vf", video_filter])
	if max_frames is not None:
		cmd.extend(["-frames:v", str(int(max_frames))])
	if output_format == "png":
		cmd.extend(["-f", "image2pipe", "-vcodec", "png", "-"])
	else:
		cmd.extend(["-f", "rawvideo", "-pix_fmt", "rgb24", "-"])
	return cmd

#============================================

def probe_frame_size(input_file: str, video_filter: str = None) -> tuple:
	"""
	Decode one frame through the filter chain and read back its size.

	Filters such as crop, scale and transpose change the size, so the raw
	frame size is measured rather than computed.
	"""
	cmd = decode_command(input_file, video_filter, max_frames=1, output_format="png")
	try:
		proc = utils.run_process(cmd, capture_output=True, text=False)
	except RuntimeError as exc:
		raise FrameSourceError(str(exc)) from exc
	if len(proc.stdout) == 0:
		raise FrameSourceError(f"no frames decoded from {input_file}")
	with PIL.Image.open(io.BytesIO(proc.stdout)) as handle:
		return handle.size

#============================================

class FrameSource():
	"""
	Forward-only stream of decoded frames from one video file.

	Iterate once; open a new source to read the file again.
	"""
	def __init__(self, input_file: str, video_filter: str = None):
		self.input_file = input_file
		self.video_filter = video_filter
		metadata = probe_video_stream(input_file)
		self.fps = metadata["fps"]
		self.frame_count = metadata["nb_frames"]
		self.width, self.height = probe_frame_size(input_file, video_filter)
		self.frames_read = 0
		self._started = False

	#============================
	@property
	def frame_bytes(self) -> int:
		return self.width * self.height * 3

	#============================
	def __iter__(self):
		if self._started:
			raise FrameSourceError(f"frame source for {self.input_file} was already read, reopen it")
		self._started = True
		return self._read_frames()

	#============================
	def _read_frames(self):
		cmd = decode_command(self.input_file, self.video_filter)
		utils.log(f"CMD: '{shlex.join(cmd)}'")
		with tempfile.TemporaryFile() as stderr_file:
			proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr_file)
			try:
				while True:
					data = proc.stdout.read(self.frame_bytes)
					if len(data) == 0:
						break
					if len(data) != self.frame_bytes:
						raise FrameSourceError(
							f"truncated frame {self.frames_read} from {self.input_file}: "
							f"{len(data)} of {self.frame_bytes} bytes")
					pixels = numpy.frombuffer(data, dtype=numpy.uint8).reshape(self.height, self.width, 3)
					self.frames_read += 1
					yield imaging.DecodedImage(pixels, imaging.PixelFormat.RGB24)
			finally:
				proc.stdout.close()
				if proc.poll() is None:
					proc.terminate()
				returncode = proc.wait()
			if returncode != 0:
				stderr_file.seek(0)
				message = stderr_file.read().decode("utf-8", errors="replace").strip()
				raise FrameSourceError(f"ffmpeg failed decoding {self.input_file}: {message}")

#============================================

def open_frames(input_file: str, video_filter: str = None) -> tuple:
	"""
	Open a video as (fps, frames).

	Args:
		input_file: Video path.
		video_filter: Optional ffmpeg -vf chain (crop, scale, transpose...).

	Returns:
		tuple: (Fraction frame rate, FrameSource)
	"""
	source = FrameSource(input_file, video_filter)
	return (source.fps, source)

#============================================

class FrameSink():
	"""
	Encode frames into a video file.

	Use as a context manager so the encoder is always finalized, also when
	the producing pipeline fails midway.
	"""
	def __init__(self, output_file: str, fps, codec: str = "libx264", crf: int = 18,
		pixel_format: str = "yuv420p"):
		self.output_file = output_file
		self.fps = fps
		self.codec = codec
		self.crf = crf
		self.pixel_format = pixel_format
		self.width = None
		self.height = None
		self.frames_written = 0
		self._proc = None
		self._stderr_file = None

	#============================
	def encode_command(self) -> list:
		cmd = [
			"ffmpeg", "-hide_banner", "-nostdin", "-y", "-v", "error",
			"-f", "rawvideo", "-pix_fmt", "rgb24",
			"-s", f"{self.width}x{self.height}",
			"-r", format_rate(self.fps),
			"-i", "-",
			"-an",
			"-c:v", self.codec,
		]
		if self.crf is not None:
			cmd.extend(["-crf", str(int(self.crf))])
		cmd.extend(["-pix_fmt", self.pixel_format, self.output_file])
		return cmd

	#============================
	def _start(self, image: imaging.DecodedImage) -> None:
		self.width = image.width
		self.height = image.height
		cmd = self.encode_command()
		utils.log(f"CMD: '{shlex.join(cmd)}'")
		self._stderr_file = tempfile.TemporaryFile()
		self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stderr=self._stderr_file)

	#============================
	def write(self, image: imaging.DecodedImage) -> None:
		if self._proc is None:
			self._start(image)
		if image.width != self.width or image.height != self.height:
			raise InvalidInputError(
				f"frame is {image.width}x{image.height}, encoder expects {self.width}x{self.height}")
		rgb = numpy.ascontiguousarray(imaging.to_rgb_array(image))
		try:
			self._proc.stdin.write(rgb.tobytes())
		except BrokenPipeError as exc:
			raise SmushError(f"encoder for {self.output_file} exited early: {self._stderr_text()}") from exc
		self.frames_written += 1

	#============================
	def _stderr_text(self) -> str:
		if self._stderr_file is None:
			return ""
		self._stderr_file.seek(0)
		return self._stderr_file.read().decode("utf-8", errors="replace").strip()

	#============================
	def close(self) -> None:
		if self._proc is None:
			return
		proc = self._proc
		self._proc = None
		try:
			proc.stdin.close()
		except BrokenPipeError:
			pass
		returncode = proc.wait()
		message = self._stderr_text()
		self._stderr_file.close()
		self._stderr_file = None
		if returncode != 0:
			raise SmushError(f"ffmpeg failed encoding {self.output_file}: {message}")
		utils.log(f"Wrote {self.frames_written} frames to {self.output_file}")

	#============================
	def __enter__(self):
		return self

	#============================
	def __exit__(self, exc_type, exc_value, traceback):
		self.close()
		return False

#============================================

class ChainedFrameSource():
	"""
	Several FrameSources read back to back as one forward-only stream.

	All clips must decode to the same frame size. The first clip sets the
	frame rate; clips at another rate are logged and read anyway.
	"""
	def __init__(self, sources: list):
		if len(sources) == 0:
			raise InvalidInputError("no input clips")
		first = sources[0]
		for source in sources[1:]:
			if (source.width, source.height) != (first.width, first.height):
				raise FrameSourceError(
					f"{source.input_file} decodes to {source.width}x{source.height}, "
					f"{first.input_file} to {first.width}x{first.height}")
			if source.fps != first.fps:
				utils.log(
					f"Warning: {source.input_file} runs at {float(source.fps):.3f} fps, "
					f"timing follows {float(first.fps):.3f} fps")
		self.sources = list(sources)
		self.input_file = first.input_file
		self.fps = first.fps
		self.width = first.width
		self.height = first.height
		counts = [source.frame_count for source in self.sources]
		self.frame_count = None
		if None not in counts:
			self.frame_count = sum(counts)
		self._started = False

	#============================
	@property
	def frames_read(self) -> int:
		return sum(source.frames_read for source in self.sources)

	#============================
	def __iter__(self):
		if self._started:
			raise FrameSourceError("chained frame source was already read, reopen it")
		self._started = True
		return self._read_frames()

	#============================
	def _read_frames(self):
		for source in self.sources:
			utils.log(f"Reading {source.input_file}")
			yield from source
