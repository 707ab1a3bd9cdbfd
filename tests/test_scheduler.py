"""
Pytest coverage for merge schedules.
"""

# Standard Library
import os
import sys

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from smushlib.analysis import smoothing
from smushlib.core import scheduler
from smushlib.core.errors import EmptyScheduleError
from smushlib.core.errors import InvalidInputError
from smushlib.core.errors import ScheduleError
from smushlib.core.errors import ScheduleOrderError
from smushlib.core.errors import ScheduleRateError

#============================================

def test_uniform_scores_split_evenly() -> None:
	"""300 frames of uniform activity into 30 output frames of 10."""
	schedule = scheduler.threshold_bucket_schedule([1.0] * 299, 30)
	assert schedule == [10] * 30

#============================================

@pytest.mark.parametrize("value", [0.3, 0.01, 0.7, 1.0 / 3.0])
def test_uniform_fractional_scores_split_evenly(value: float) -> None:
	schedule = scheduler.threshold_bucket_schedule([value] * 299, 30)
	assert schedule == [10] * 30

#============================================

def test_smoothed_uniform_scores_split_evenly() -> None:
	smoothed = smoothing.savitzky_golay_smooth(numpy.full(299, 0.7), 5, 2)
	schedule = scheduler.threshold_bucket_schedule(smoothed, 30)
	assert schedule == [10] * 30

#============================================

@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_threshold_schedule_sums_to_source_frames(seed: int) -> None:
	rng = numpy.random.default_rng(seed)
	pair_scores = rng.exponential(2.0, size=999)
	schedule = scheduler.threshold_bucket_schedule(pair_scores, 100)
	assert sum(schedule) == 1000
	assert min(schedule) >= 1
	# running sums reset at each group, so the count stays close to the target
	assert len(schedule) <= 101

#============================================

def test_busy_stretch_gets_short_groups() -> None:
	pair_scores = [0.1] * 100 + [10.0] * 100 + [0.1] * 99
	schedule = scheduler.threshold_bucket_schedule(pair_scores, 20)
	assert sum(schedule) == 300
	assert max(schedule) > 10 * min(schedule)

#============================================

def test_leftover_frames_become_final_group() -> None:
	schedule = scheduler.threshold_bucket_schedule([1.0] * 10, 3)
	assert sum(schedule) == 11
	assert schedule[-1] <= schedule[0]

#============================================

def test_zero_activity_falls_back_to_flat() -> None:
	schedule = scheduler.threshold_bucket_schedule([0.0] * 99, 10)
	assert schedule == [10] * 10

#============================================

def test_negative_scores_rejected() -> None:
	with pytest.raises(InvalidInputError):
		scheduler.threshold_bucket_schedule([1.0, -1.0], 1)

#============================================

def test_flat_schedule_clips_last_group() -> None:
	assert scheduler.flat_schedule(25, 5) == [5, 5, 5, 5, 5]
	assert scheduler.flat_schedule(23, 5) == [5, 5, 5, 5, 3]
	assert scheduler.flat_schedule(3, 10) == [1, 1, 1]

#============================================

def test_direct_readout_jumps_by_counts() -> None:
	counts = [3, 9, 9, 1, 1, 2, 9, 9]
	assert scheduler.direct_readout_schedule(counts) == [3, 1, 1, 2, 1]

#============================================

def test_direct_readout_clips_at_end() -> None:
	assert scheduler.direct_readout_schedule([5, 5, 5]) == [3]

#============================================

def test_exponent_search_meets_target() -> None:
	pair_scores = numpy.concatenate((numpy.zeros(500), numpy.ones(99), numpy.zeros(400)))
	schedule, exponent = scheduler.exponent_search_schedule(pair_scores, 200,
		min_merge=1, max_merge=20)
	assert exponent is not None
	assert sum(schedule) == 1000
	assert len(schedule) <= 200 * 1.05

#============================================

def test_exponent_search_falls_back_to_flat() -> None:
	schedule, exponent = scheduler.exponent_search_schedule([1.0] * 299, 30,
		min_merge=1, max_merge=5)
	assert exponent is None
	assert schedule == [10] * 30

#============================================

def test_validate_schedule() -> None:
	assert scheduler.validate_schedule([1, 2.0, numpy.int64(3)]) == [1, 2, 3]
	with pytest.raises(EmptyScheduleError):
		scheduler.validate_schedule([])
	with pytest.raises(ScheduleError):
		scheduler.validate_schedule([2, 0])
	with pytest.raises(ScheduleError):
		scheduler.validate_schedule([1.5])

#============================================

def test_ratio_table_even_split() -> None:
	schedule = scheduler.ratio_table_schedule([(100, 10), (200, 60)])
	assert schedule == [10] * 10 + [2] * 50

#============================================

def test_ratio_table_uneven_span() -> None:
	schedule = scheduler.ratio_table_schedule([(10, 3)])
	assert sum(schedule) == 10
	assert len(schedule) == 3
	assert max(schedule) - min(schedule) <= 1

#============================================

def test_ratio_table_carries_empty_spans() -> None:
	schedule = scheduler.ratio_table_schedule([(5, 0), (10, 2), (12, 2)])
	assert schedule == [5, 7]

#============================================

def test_ratio_table_errors() -> None:
	with pytest.raises(EmptyScheduleError):
		scheduler.ratio_table_schedule([])
	with pytest.raises(ScheduleOrderError):
		scheduler.ratio_table_schedule([(10, 1), (10, 2)])
	with pytest.raises(ScheduleOrderError):
		scheduler.ratio_table_schedule([(10, 3), (20, 2)])
	with pytest.raises(ScheduleRateError):
		scheduler.ratio_table_schedule([(5, 10)])

#============================================

def test_load_ratio_table(tmp_path) -> None:
	table_file = tmp_path / "ratios.tsv"
	table_file.write_text("# input\toutput\n100\t10\n\n200\t60  # busy part\n", encoding="utf-8")
	rows = scheduler.load_ratio_table(str(table_file))
	assert rows == [(100, 10), (200, 60)]

#============================================

def test_load_ratio_table_bad_line(tmp_path) -> None:
	table_file = tmp_path / "ratios.tsv"
	table_file.write_text("100 10 3\n", encoding="utf-8")
	with pytest.raises(InvalidInputError):
		scheduler.load_ratio_table(str(table_file))

#============================================

def test_plan_from_chunk_scores_covers_all_frames() -> None:
	chunk_scores = [1000.0] * 5 + [50000.0] * 5 + [1000.0] * 5
	rows = scheduler.plan_from_chunk_scores(chunk_scores, 24, window_size=3,
		polynomial_degree=1, exponent=1.0, min_merge=1, max_merge=12, total_frames=350)
	assert rows[-1][0] == 350
	schedule = scheduler.ratio_table_schedule(rows)
	assert sum(schedule) == 350
	# quiet chunks merge about 12 frames, busy ones keep every frame
	assert max(schedule) >= 11
	assert min(schedule) == 1

#============================================

def test_schedule_summary() -> None:
	summary = scheduler.schedule_summary([10] * 30, 30)
	assert summary["output_frames"] == 30
	assert summary["source_frames"] == 300
	assert summary["output_seconds"] == pytest.approx(1.0)
	assert summary["min_merge"] == 10
