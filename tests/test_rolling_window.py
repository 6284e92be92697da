import pytest

from rolling_window import RollingWindow


def test_empty_window_means_are_zero():
    w = RollingWindow(4)
    assert w.mean_volume == 0.0
    assert w.mean_abs_imbalance == 0.0
    assert w.mean_imbalance == 0.0
    assert not w.is_ready


def test_means_track_current_sample_count():
    w = RollingWindow(10)
    w.push(10.0, -4.0)
    w.push(20.0, 2.0)
    assert w.mean_volume == pytest.approx(15.0)
    assert w.mean_abs_imbalance == pytest.approx(3.0)
    assert w.mean_imbalance == pytest.approx(-1.0)


def test_ready_at_half_the_bound():
    w = RollingWindow(5)
    w.push(1.0, 0.0)
    assert not w.is_ready
    w.push(1.0, 0.0)
    assert w.is_ready


def test_oldest_sample_evicted():
    w = RollingWindow(3)
    for v in (1.0, 2.0, 3.0, 4.0):
        w.push(v, -v)
    assert len(w) == 3
    assert w.mean_volume == pytest.approx(3.0)
    assert w.mean_abs_imbalance == pytest.approx(3.0)


def test_reset():
    w = RollingWindow(2)
    w.push(1.0, 1.0)
    w.reset()
    assert len(w) == 0
    assert w.mean_volume == 0.0


def test_size_bound():
    with pytest.raises(ValueError):
        RollingWindow(1)
