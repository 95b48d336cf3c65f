from datetime import datetime, timedelta, timezone

from progress import estimate_progress, estimated_completion

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = estimated_completion(T0, 300)


def _at(seconds):
    return T0 + timedelta(seconds=seconds)


def test_halfway_through_window():
    assert estimate_progress(T0, WINDOW, 'processing', now=_at(150)) == 50


def test_past_window_caps_below_completion():
    assert estimate_progress(T0, WINDOW, 'processing', now=_at(400)) == 95
    assert estimate_progress(T0, WINDOW, 'processing', now=_at(300)) == 95


def test_early_progress_has_a_floor():
    assert estimate_progress(T0, WINDOW, 'processing', now=_at(5)) == 10


def test_terminal_and_pending_states():
    assert estimate_progress(T0, WINDOW, 'completed', now=_at(10)) == 100
    assert estimate_progress(T0, WINDOW, 'failed', now=_at(150)) == 0
    assert estimate_progress(T0, WINDOW, 'pending', now=_at(150)) == 0


def test_naive_timestamps_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    assert estimate_progress(naive, WINDOW, 'processing', now=_at(150)) == 50
    assert estimated_completion(naive, 300) == WINDOW


def test_zero_length_window_reports_the_cap():
    assert estimate_progress(T0, T0, 'processing', now=T0 - timedelta(seconds=5)) == 95
    assert estimate_progress(T0, T0, 'processing', now=T0) == 95
