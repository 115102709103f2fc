import pytest

from stratlab.portfolio import compute_allocations


def test_leverage_capped_when_fractions_exceed_one():
    plan = compute_allocations([0.6, 0.7], 10000)
    assert plan.total_kelly == pytest.approx(1.3)
    assert plan.leverage_ratio == pytest.approx(1 / 1.3)
    assert plan.allocations == pytest.approx([4615.38, 5384.62], abs=0.01)
    assert plan.total_allocated == pytest.approx(10000)


def test_fractions_under_one_leave_cash():
    plan = compute_allocations([0.2, 0.3], 10000)
    assert plan.leverage_ratio == 1.0
    assert plan.allocations == pytest.approx([2000, 3000])
    assert plan.weights == pytest.approx([0.2, 0.3])
    assert plan.total_allocated <= plan.total_capital


def test_missing_fraction_takes_default():
    plan = compute_allocations([None, 0.5], 1000, default_fraction=0.25)
    assert plan.allocations == pytest.approx([250, 500])


def test_rejects_bad_inputs():
    with pytest.raises(ValueError):
        compute_allocations([0.5], 0)
    with pytest.raises(ValueError):
        compute_allocations([1.5], 1000)
