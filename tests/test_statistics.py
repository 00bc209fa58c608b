import math

import pytest

from campus_feedback.services import statistics as stats


def test_mean_empty_is_zero():
    assert stats.mean([]) == 0.0
    assert stats.mean([4, 5]) == 4.5


def test_variance_uses_sample_denominator():
    assert stats.variance([4.0, 3.0, 5.0]) == pytest.approx(1.0)
    assert stats.std_dev([4.0, 3.0, 5.0]) == pytest.approx(1.0)


def test_single_sample_has_no_variance():
    assert stats.variance([4.0]) == 0.0
    assert stats.variance([]) == 0.0


@pytest.mark.parametrize("deviation,label", [
    (0.0, "High"),
    (0.49, "High"),
    (0.5, "Medium"),
    (0.99, "Medium"),
    (1.0, "Low"),
    (2.3, "Low"),
])
def test_consistency_cutoffs_are_strict(deviation, label):
    assert stats.consistency(deviation) == label


def test_round_half_up_not_bankers():
    assert stats.round_half_up(4.25, 1) == 4.3
    assert stats.round_half_up(2.5, 0) == 3.0
    assert stats.round_half_up(4.125, 2) == 4.13
    assert stats.round_half_up(None) == 0.0


def test_distribution_bands_nearest_integer():
    counts = stats.distribution([1, 1.49, 1.5, 2.4, 4.5, 5, 5.0])
    assert counts == {1: 2, 2: 2, 3: 0, 4: 0, 5: 3}


def test_distribution_percentages():
    pct = stats.distribution_percentages({1: 1, 2: 0, 3: 1, 4: 0, 5: 2})
    assert pct[5] == pytest.approx(50.0)
    assert sum(pct.values()) == pytest.approx(100.0)
    assert stats.distribution_percentages({1: 0, 2: 0}) == {1: 0.0, 2: 0.0}


def test_summarize_full_precision():
    s = stats.summarize([5, 4, 3, 5])
    assert s["count"] == 4
    assert s["mean"] == 4.25
    assert s["min"] == 5 - 2 and s["max"] == 5
    assert s["std_dev"] == pytest.approx(math.sqrt(s["variance"]))
    assert s["consistency"] == "Medium"


def test_summarize_empty():
    s = stats.summarize([])
    assert s["count"] == 0 and s["mean"] == 0.0 and s["consistency"] == "High"
