import pytest

from app.services.progress import compute_phase_progress, compute_progress


def test_zero_total_reports_zero():
    assert compute_progress(0, 0) == 0
    assert compute_progress(5, 0) == 0
    assert compute_phase_progress(0, 0, 95) == 0


@pytest.mark.parametrize(
    "processed,total,expected",
    [(1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (3, 3, 100), (0, 7, 0)],
)
def test_rounding_is_half_up(processed, total, expected):
    assert compute_progress(processed, total) == expected


def test_clamped_to_bounds():
    assert compute_progress(12, 10) == 100
    assert compute_progress(-3, 10) == 0


def test_phase_progress_never_exceeds_cap():
    assert compute_phase_progress(1000, 1000, 95) == 95
    assert compute_phase_progress(2000, 1000, 95) == 95
    assert compute_phase_progress(500, 1000, 95) == 48


def test_non_decreasing_for_growing_counters():
    values = [compute_progress(n, 37) for n in range(38)]
    assert values == sorted(values)
