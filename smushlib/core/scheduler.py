#!/usr/bin/env python3

"""
scheduler.py

Merge schedules: lists of positive ints, each the number of consecutive source
frames folded into one output frame.

Strategies:
- threshold bucket: constant visual-change budget per output frame
- direct readout: per-frame merge counts read off as the stream advances
- exponent sweep: direct readout over a range of variability exponents,
  falling back to a flat ratio when none is short enough
- ratio table: input frame index -> cumulative output frame index rows
"""

# Standard Library
import math

# PIP3 modules
import numpy

# local repo modules
from smushlib.analysis import smoothing
from smushlib.core import utils
from smushlib.core.errors import EmptyScheduleError
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import ScheduleError
from smushlib.core.errors import ScheduleOrderError
from smushlib.core.errors import ScheduleRateError

DEFAULT_EXPONENT_SWEEP = (1.0, 1.5, 2.0, 3.0, 4.0)
THRESHOLD_SLACK = 1e-9

#============================================

def validate_schedule(schedule) -> list:
	"""
	Check a schedule before a pipeline run.

	Args:
		schedule: Sequence of merge counts.

	Returns:
		list: The schedule as plain ints.
	"""
	if schedule is None or len(schedule) == 0:
		raise EmptyScheduleError("merge schedule is empty")
	result = []
	for index, value in enumerate(schedule):
		count = int(value)
		if count != value or count < 1:
			raise ScheduleError(f"schedule entry {index} must be a positive int, got {value!r}")
		result.append(count)
	return result

#============================================

def frame_weights(pair_scores) -> numpy.ndarray:
	"""
	Align pair scores (frames - 1 values) with source frames.

	Frame i takes the score of the pair that ends on it; frame 0 reuses the
	first pair's score.
	"""
	scores = numpy.asarray(pair_scores, dtype=numpy.float64).ravel()
	if scores.size == 0:
		return numpy.ones(1, dtype=numpy.float64)
	if not numpy.all(numpy.isfinite(scores)):
		raise InvalidInputError("activity scores must be finite")
	if numpy.any(scores < 0):
		raise InvalidInputError("activity scores must be >= 0")
	return numpy.concatenate((scores[:1], scores))

#============================================

def flat_schedule(total_source_frames: int, target_output_frames: int) -> list:
	"""
	Uniform merges at the average source-to-output ratio, last group clipped.
	"""
	if total_source_frames < 1:
		raise InvalidInputError("need at least one source frame")
	if target_output_frames < 1:
		raise InvalidInputError("target output frames must be >= 1")
	ratio = max(1, int(round(total_source_frames / target_output_frames)))
	schedule = []
	remaining = total_source_frames
	while remaining > 0:
		step = min(ratio, remaining)
		schedule.append(step)
		remaining -= step
	return schedule

#============================================

def threshold_bucket_schedule(pair_scores, target_output_frames: int) -> list:
	"""
	Group frames so each output frame carries the same amount of change.

	The threshold is the total score divided by the target frame count. Frames
	accumulate into a group until the running score reaches the threshold.
	Leftover frames at the end become a final, possibly short, group. The
	schedule always sums to len(pair_scores) + 1 source frames.

	Args:
		pair_scores: Activity score per consecutive frame pair.
		target_output_frames: Desired number of output frames.

	Returns:
		list: Merge counts.
	"""
	if target_output_frames < 1:
		raise InvalidInputError("target output frames must be >= 1")
	weights = frame_weights(pair_scores)
	total = float(weights.sum())
	if total <= 0 or not math.isfinite(total):
		utils.log("No activity measured, using a flat merge ratio")
		return flat_schedule(weights.size, target_output_frames)
	threshold = total / target_output_frames
	# float sums of equal scores land within a few ulps of the threshold
	reached = threshold * (1.0 - THRESHOLD_SLACK)
	schedule = []
	pending = 0
	running = 0.0
	for weight in weights.tolist():
		running += weight
		pending += 1
		if running >= reached:
			schedule.append(pending)
			pending = 0
			running = 0.0
	if pending > 0:
		schedule.append(pending)
	return schedule

#============================================

def direct_readout_schedule(merge_counts) -> list:
	"""
	Read merge counts straight off a per-source-frame array.

	At source position p the entry is counts[p], clipped to the frames left,
	then the position advances past that group.
	"""
	counts = numpy.asarray(merge_counts).ravel()
	if counts.size == 0:
		raise EmptyScheduleError("no merge counts to read")
	total = int(counts.size)
	schedule = []
	position = 0
	while position < total:
		step = max(1, int(counts[position]))
		step = min(step, total - position)
		schedule.append(step)
		position += step
	return schedule

#============================================

def exponent_search_schedule(smoothed_pair_scores, target_output_frames: int,
	exponents=DEFAULT_EXPONENT_SWEEP, min_merge: int = 1, max_merge: int = 100,
	tolerance: float = 0.05) -> tuple:
	"""
	Try variability exponents in order until direct readout fits the target.

	Quiet frames get the largest merge counts. The first exponent whose
	schedule is no longer than target * (1 + tolerance) wins. When none does,
	fall back to a flat ratio instead of failing the run.

	Args:
		smoothed_pair_scores: Smoothed activity per frame pair.
		target_output_frames: Desired number of output frames.
		exponents: Exponents to try, in order.
		min_merge: Smallest merge count.
		max_merge: Largest merge count.
		tolerance: Allowed overshoot as a fraction of the target.

	Returns:
		tuple: (schedule, exponent used or None for the flat fallback)
	"""
	if target_output_frames < 1:
		raise InvalidInputError("target output frames must be >= 1")
	weights = frame_weights(smoothed_pair_scores)
	limit = target_output_frames * (1.0 + tolerance)
	for exponent in exponents:
		counts = smoothing.enhance_variability(weights, exponent,
			min_merge=min_merge, max_merge=max_merge, invert=True)
		schedule = direct_readout_schedule(counts)
		if len(schedule) <= limit:
			return (schedule, float(exponent))
		utils.log(f"exponent {exponent}: {len(schedule)} output frames, target {target_output_frames}")
	utils.log("No exponent met the target, using a flat merge ratio")
	return (flat_schedule(weights.size, target_output_frames), None)

#============================================

def ratio_table_schedule(rows) -> list:
	"""
	Build a schedule from (input_index, cumulative_output_index) rows.

	The table starts at an implicit (0, 0). Each span of source frames is split
	into as many near-equal groups as output frames it gained. Spans that gain
	no output frames carry their source frames into the next span; frames
	carried past the last row join the final group.
	"""
	if rows is None or len(rows) == 0:
		raise EmptyScheduleError("ratio table has no rows")
	schedule = []
	previous_in = 0
	previous_out = 0
	carry = 0
	for input_index, output_index in rows:
		input_index = int(input_index)
		output_index = int(output_index)
		if input_index <= previous_in:
			raise ScheduleOrderError(
				f"input frame indexes must increase: {previous_in}, {input_index}")
		if output_index < previous_out:
			raise ScheduleOrderError(
				f"output frame indexes must not decrease: {previous_out}, {output_index}")
		span_frames = input_index - previous_in + carry
		span_outputs = output_index - previous_out
		previous_in = input_index
		previous_out = output_index
		if span_outputs == 0:
			carry = span_frames
			continue
		if span_outputs > span_frames:
			raise ScheduleRateError(
				f"{span_frames} source frames cannot fill {span_outputs} output frames")
		bounds = [(step * span_frames) // span_outputs for step in range(span_outputs + 1)]
		schedule.extend(bounds[step + 1] - bounds[step] for step in range(span_outputs))
		carry = 0
	if carry > 0:
		if len(schedule) == 0:
			schedule.append(carry)
		else:
			schedule[-1] += carry
	return schedule

#============================================

def load_ratio_table(filepath: str) -> list:
	"""
	Read a two-column table, tab or whitespace separated, '#' comments allowed.
	"""
	utils.ensure_file_exists(filepath)
	rows = []
	with open(filepath, "r", encoding="utf-8") as handle:
		for line_number, line in enumerate(handle, start=1):
			text = line.split("#", 1)[0].strip()
			if text == "":
				continue
			parts = text.split()
			if len(parts) != 2:
				raise InvalidInputError(f"{filepath}:{line_number}: expected two columns")
			rows.append((int(parts[0]), int(parts[1])))
	return rows

#============================================

def plan_from_chunk_scores(chunk_scores, chunk_size: int, window_size: int = 5,
	polynomial_degree: int = 2, exponent: float = 2.0, min_merge: int = 1,
	max_merge: int = 100, total_frames: int = None) -> list:
	"""
	Turn per-chunk action scores into ratio-table rows.

	Quiet chunks get large merge counts. Cumulative input advances by
	chunk_size per chunk (clipped to total_frames when given), cumulative
	output by the chunk length / merge (truncated).
	"""
	if chunk_size < 1:
		raise InvalidInputError("chunk size must be >= 1")
	smoothed = smoothing.savitzky_golay_smooth(chunk_scores, window_size, polynomial_degree)
	merges = smoothing.enhance_variability(smoothed, exponent,
		min_merge=min_merge, max_merge=max_merge, invert=True)
	rows = []
	cumulative_in = 0
	cumulative_out = 0.0
	for merge in merges.tolist():
		step = chunk_size
		if total_frames is not None:
			step = min(chunk_size, total_frames - cumulative_in)
		if step <= 0:
			break
		cumulative_in += step
		cumulative_out += step / merge
		rows.append((cumulative_in, int(cumulative_out)))
	return rows

#============================================

def schedule_summary(schedule, output_fps: float) -> dict:
	return {
		"output_frames": len(schedule),
		"source_frames": int(sum(schedule)),
		"output_seconds": len(schedule) / float(output_fps),
		"min_merge": int(min(schedule)),
		"max_merge": int(max(schedule)),
	}
