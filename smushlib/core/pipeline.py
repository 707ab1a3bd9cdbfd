#!/usr/bin/env python3

"""
pipeline.py

Pass 2: fold full-resolution frames into averaged output frames following a
merge schedule.

State machine:
	AWAITING_FRAME -> ACCUMULATING -> EMITTING -> (AWAITING_FRAME | DRAINED)

Frames past the end of the schedule are grouped into one final output frame.
Whatever is still in the accumulator when the source runs dry is flushed as a
last, possibly short, frame.
"""

# Standard Library
import enum
import queue
import threading
from dataclasses import dataclass

# local repo modules
from smushlib.accumulate import accumulator
from smushlib.analysis import imaging
from smushlib.core import scheduler
from smushlib.core import utils
from smushlib.core.errors import FrameSourceError

DEFAULT_QUEUE_SIZE = 64

_END_OF_STREAM = object()

#============================================

class _ProducerFailure():
	def __init__(self, error: Exception):
		self.error = error

#============================================

def prefetch(iterable, capacity: int = DEFAULT_QUEUE_SIZE):
	"""
	Iterate `iterable` on a background thread through a bounded queue.

	The producer blocks while the queue is full, so memory stays bounded by
	`capacity` items. Producer errors are re-raised in the consumer.

	Args:
		iterable: Source items.
		capacity: Queue size, must be >= 1.

	Yields:
		Items of `iterable` in order.
	"""
	if capacity < 1:
		raise ValueError("prefetch capacity must be >= 1")
	buffer = queue.Queue(maxsize=capacity)
	stop = threading.Event()

	def offer(item) -> bool:
		while not stop.is_set():
			try:
				buffer.put(item, timeout=0.1)
				return True
			except queue.Full:
				continue
		return False

	def produce() -> None:
		try:
			for item in iterable:
				if not offer(item):
					return
		except Exception as error:
			offer(_ProducerFailure(error))
			return
		offer(_END_OF_STREAM)

	thread = threading.Thread(target=produce, name="smush-prefetch", daemon=True)
	thread.start()
	try:
		while True:
			item = buffer.get()
			if item is _END_OF_STREAM:
				break
			if isinstance(item, _ProducerFailure):
				raise item.error
			yield item
		thread.join()
	finally:
		stop.set()

#============================================

class PipelineState(enum.Enum):
	AWAITING_FRAME = "awaiting_frame"
	ACCUMULATING = "accumulating"
	EMITTING = "emitting"
	DRAINED = "drained"

#============================================

@dataclass
class PipelineReport():
	source_frames: int = 0
	output_frames: int = 0
	overflow_frames: int = 0
	unused_schedule_entries: int = 0
	unconsumed_schedule_frames: int = 0
	discarded_frames: int = 0
	failed: bool = False

#============================================

class MergePipeline():
	def __init__(self, schedule, backend: str = "cpu", backend_options: dict = None,
		queue_size: int = DEFAULT_QUEUE_SIZE, accumulator_factory=None):
		"""
		Args:
			schedule: Merge counts, validated here so an empty schedule fails before any work.
			backend: Accumulator backend name.
			backend_options: Extra keyword arguments for the backend.
			queue_size: Prefetch queue size, 0 reads the source inline.
			accumulator_factory: Optional callable(width, height) replacing the backend lookup.
		"""
		self.schedule = scheduler.validate_schedule(schedule)
		self.backend = backend
		self.backend_options = dict(backend_options or {})
		self.queue_size = queue_size
		self.accumulator_factory = accumulator_factory
		self.state = PipelineState.AWAITING_FRAME
		self.report = PipelineReport()

	#============================
	def _make_accumulator(self, width: int, height: int):
		if self.accumulator_factory is not None:
			return self.accumulator_factory(width, height)
		return accumulator.blank_of(self.backend, width, height, **self.backend_options)

	#============================
	def run(self, frames):
		"""
		Merge a frame stream, yielding each averaged output frame as soon as
		its group is complete.

		Args:
			frames: Iterable of DecodedImage, read once.

		Yields:
			DecodedImage: Averaged RGB24 frames.
		"""
		self.report = PipelineReport()
		report = self.report
		entries = iter(self.schedule)
		remaining = next(entries)
		merger = None
		rate = utils.RateLogger(every=5000, label="input frames")
		source = frames
		owned = []
		if self.queue_size > 0:
			source = prefetch(frames, self.queue_size)
			owned.append(source)
		bar = utils.progress(source, total=sum(self.schedule), desc="merging")
		if bar is not source:
			owned.append(bar)
		source = bar
		self.state = PipelineState.AWAITING_FRAME
		try:
			for image in source:
				self.state = PipelineState.ACCUMULATING
				if not isinstance(image, imaging.DecodedImage):
					raise FrameSourceError(f"frame {report.source_frames} is not a decoded image")
				if merger is None:
					merger = self._make_accumulator(image.width, image.height)
				merger.add(image)
				report.source_frames += 1
				rate.hit()
				if remaining is None:
					report.overflow_frames += 1
				else:
					remaining -= 1
				if remaining == 0:
					self.state = PipelineState.EMITTING
					yield merger.to_average_and_reset()
					report.output_frames += 1
					remaining = next(entries, None)
					if remaining is None:
						utils.log("Schedule exhausted, grouping any remaining frames into one")
				self.state = PipelineState.AWAITING_FRAME
			self.state = PipelineState.DRAINED
			if merger is not None and merger.num_added > 0:
				yield merger.to_average_and_reset()
				report.output_frames += 1
				if remaining is not None:
					remaining = next(entries, None)
			self._count_unused(report, remaining, entries)
			self._log_summary(report)
		except (Exception, GeneratorExit):
			report.failed = True
			if merger is not None:
				report.discarded_frames = merger.num_added
			self._count_unused(report, remaining, entries)
			utils.log(
				f"Merge aborted after {report.source_frames} source frames and "
				f"{report.output_frames} output frames")
			self._log_summary(report)
			raise
		finally:
			for opened in reversed(owned):
				opened.close()
			if merger is not None:
				merger.close()

	#============================
	def _count_unused(self, report: PipelineReport, remaining, entries) -> None:
		later = list(entries)
		unused = len(later)
		frames = sum(later)
		if remaining is not None:
			unused += 1
			frames += remaining
		report.unused_schedule_entries = unused
		report.unconsumed_schedule_frames = frames

	#============================
	def _log_summary(self, report: PipelineReport) -> None:
		utils.log(f"Output frames: {report.output_frames} from {report.source_frames} source frames")
		utils.log(f"Frames past the end of the schedule (should be close to 0): {report.overflow_frames}")
		utils.log(f"Unused schedule entries (should be close to 0): {report.unused_schedule_entries}")
		if report.discarded_frames > 0:
			utils.log(f"Discarded partially merged frames: {report.discarded_frames}")

	#============================
	def run_to_sink(self, frames, sink) -> PipelineReport:
		"""
		Run the merge and write every output frame to `sink.write()`.
		"""
		outputs = self.run(frames)
		try:
			for image in outputs:
				sink.write(image)
		finally:
			# a failed write leaves run() paused at its yield
			outputs.close()
		return self.report
