"""
Pytest coverage for the merge pipeline and the bounded prefetch queue.
"""

# Standard Library
import os
import sys
import time

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# tests helpers
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
if TESTS_DIR not in sys.path:
	sys.path.insert(0, TESTS_DIR)
from frame_utils import solid_frame

# local repo modules
from smushlib.accumulate.cpu_backend import CpuAccumulator
from smushlib.analysis import imaging
from smushlib.core import pipeline
from smushlib.core import scheduler
from smushlib.core.errors import EmptyScheduleError
from smushlib.core.errors import FrameSourceError
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import SmushError

#============================================

def _frames(count: int, width: int = 4, height: int = 3):
	for index in range(count):
		yield imaging.from_rgb_array(solid_frame(width, height, (index % 256, 7, 255 - index % 256)))

#============================================

class _ListSink():
	def __init__(self):
		self.images = []

	def write(self, image) -> None:
		self.images.append(image)

#============================================

def test_end_to_end_uniform_activity() -> None:
	"""300 frames of uniform activity, 30 output frames of 10 each."""
	schedule = scheduler.threshold_bucket_schedule([1.0] * 299, 30)
	assert schedule == [10] * 30
	merger = pipeline.MergePipeline(schedule, backend="cpu", queue_size=8)
	sink = _ListSink()
	report = merger.run_to_sink(_frames(300), sink)
	assert len(sink.images) == 30
	assert report.output_frames == 30
	assert report.source_frames == 300
	assert report.overflow_frames == 0
	assert report.unused_schedule_entries == 0
	assert report.unconsumed_schedule_frames == 0
	assert merger.state is pipeline.PipelineState.DRAINED
	# frames 10..19 have red 10..19, mean 14.5 floors to 14
	assert sink.images[1].pixels[0, 0].tolist() == [14, 7, 240]

#============================================

def test_frames_past_schedule_form_one_group() -> None:
	merger = pipeline.MergePipeline([4, 4], queue_size=0)
	outputs = list(merger.run(_frames(13)))
	assert len(outputs) == 3
	assert merger.report.overflow_frames == 5
	assert merger.report.source_frames == 13
	# last group holds frames 8..12
	assert outputs[-1].pixels[0, 0, 0] == 10

#============================================

def test_short_source_flushes_partial_group() -> None:
	merger = pipeline.MergePipeline([4, 4, 4], queue_size=2)
	outputs = list(merger.run(_frames(6)))
	assert len(outputs) == 2
	assert outputs[1].pixels[0, 0, 0] == 4
	assert merger.report.unused_schedule_entries == 1
	assert merger.report.unconsumed_schedule_frames == 4

#============================================

def test_empty_source_emits_nothing() -> None:
	merger = pipeline.MergePipeline([3])
	assert list(merger.run(iter([]))) == []
	assert merger.report.unused_schedule_entries == 1

#============================================

def test_empty_schedule_rejected_before_start() -> None:
	with pytest.raises(EmptyScheduleError):
		pipeline.MergePipeline([])

#============================================

def test_size_change_is_fatal() -> None:
	def frames():
		yield from _frames(5)
		yield imaging.from_rgb_array(solid_frame(8, 8, (0, 0, 0)))

	merger = pipeline.MergePipeline([3, 3], queue_size=0)
	outputs = []
	with pytest.raises(InvalidInputError):
		for image in merger.run(frames()):
			outputs.append(image)
	assert len(outputs) == 1
	assert merger.report.failed
	assert merger.report.discarded_frames == 2
	assert merger.report.unused_schedule_entries == 1
	assert merger.report.unconsumed_schedule_frames == 1

#============================================

def test_source_errors_propagate_through_prefetch() -> None:
	def frames():
		yield from _frames(4)
		raise FrameSourceError("corrupt frame")

	merger = pipeline.MergePipeline([2, 2, 2], queue_size=2)
	outputs = []
	with pytest.raises(FrameSourceError):
		for image in merger.run(frames()):
			outputs.append(image)
	assert len(outputs) == 2
	assert merger.report.failed

#============================================

class _FailingSink():
	def __init__(self, fail_on: int):
		self.fail_on = fail_on
		self.writes = 0

	def write(self, image) -> None:
		self.writes += 1
		if self.writes == self.fail_on:
			raise SmushError("encoder exited early")

#============================================

@pytest.mark.parametrize("queue_size", [0, 4])
def test_sink_failure_fills_report(queue_size: int) -> None:
	merger = pipeline.MergePipeline([4] * 5, queue_size=queue_size)
	with pytest.raises(SmushError):
		merger.run_to_sink(_frames(20), _FailingSink(fail_on=2))
	report = merger.report
	assert report.failed
	assert report.source_frames == 8
	assert report.output_frames == 1
	# the group that failed to write and the three after it
	assert report.unused_schedule_entries == 4
	assert report.unconsumed_schedule_frames == 12

#============================================

def test_non_image_frame_rejected() -> None:
	merger = pipeline.MergePipeline([1], queue_size=0)
	with pytest.raises(FrameSourceError):
		list(merger.run([numpy.zeros((2, 2, 3), dtype=numpy.uint8)]))

#============================================

def test_accumulator_is_created_once_and_closed() -> None:
	created = []

	def factory(width: int, height: int):
		merger = CpuAccumulator(width, height)
		created.append(merger)
		return merger

	merger = pipeline.MergePipeline([2] * 5, accumulator_factory=factory, queue_size=0)
	outputs = list(merger.run(_frames(10, width=5, height=2)))
	assert len(outputs) == 5
	assert outputs[0].width == 5
	assert len(created) == 1
	assert created[0]._closed

#============================================

def test_prefetch_keeps_order() -> None:
	assert list(pipeline.prefetch(range(100), 3)) == list(range(100))

#============================================

def test_prefetch_is_bounded() -> None:
	produced = []

	def numbers():
		for value in range(1000):
			produced.append(value)
			yield value

	stream = pipeline.prefetch(numbers(), 2)
	assert next(stream) == 0
	time.sleep(0.3)
	# one taken, two queued, one waiting in the producer
	assert len(produced) <= 4
	stream.close()

#============================================

def test_prefetch_rejects_zero_capacity() -> None:
	with pytest.raises(ValueError):
		list(pipeline.prefetch([1], 0))
