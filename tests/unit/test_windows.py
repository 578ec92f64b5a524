"""Tests for splitting backfill ranges into request windows."""
from datetime import datetime, timedelta, timezone

import pytest

from ingest.backfill.windows import DateWindow, split_windows

UTC = timezone.utc


def dt(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestSplitWindows:
    def test_100_day_range_gives_two_windows(self):
        start = dt(2023, 1, 1)
        end = start + timedelta(days=100)
        windows = split_windows(start, end, 89)

        assert len(windows) == 2
        assert windows[0].end - windows[0].start == timedelta(days=89)
        assert windows[1].start == windows[0].end
        assert windows[1].end == end

    def test_range_of_exactly_89_days_is_one_window(self):
        start = dt(2023, 1, 1)
        windows = split_windows(start, start + timedelta(days=89), 89)
        assert len(windows) == 1

    def test_short_range_is_one_window(self):
        windows = split_windows(dt(2023, 1, 1), dt(2023, 1, 10), 89)
        assert windows == [DateWindow(dt(2023, 1, 1), dt(2023, 1, 10))]

    def test_zero_length_range_still_yields_one_window(self):
        windows = split_windows(dt(2023, 1, 1), dt(2023, 1, 1), 89)
        assert len(windows) == 1

    def test_windows_are_contiguous_and_bounded(self):
        start, end = dt(2022, 1, 1), dt(2023, 3, 15)
        windows = split_windows(start, end, 29)
        assert windows[0].start == start
        assert windows[-1].end == end
        for prev, nxt in zip(windows, windows[1:]):
            assert prev.end == nxt.start
        assert all(w.end - w.start <= timedelta(days=29) for w in windows)

    def test_end_date_example(self):
        """2023-01-01 → 2023-04-10 with 89-day windows: two requests, last ends at endDate."""
        end = dt(2023, 4, 10)
        windows = split_windows(dt(2023, 1, 1), end, 89)
        assert len(windows) == 2
        assert windows[1].end == end

    def test_naive_datetimes_treated_as_utc(self):
        windows = split_windows(datetime(2023, 1, 1), datetime(2023, 1, 2), 89)
        assert windows[0].start.tzinfo == UTC

    def test_end_before_start_raises(self):
        with pytest.raises(ValueError):
            split_windows(dt(2023, 2, 1), dt(2023, 1, 1), 89)

    def test_non_positive_window_raises(self):
        with pytest.raises(ValueError):
            split_windows(dt(2023, 1, 1), dt(2023, 2, 1), 0)


class TestDateWindow:
    def test_seconds_and_millis(self):
        window = DateWindow(dt(2023, 1, 1), dt(2023, 1, 2))
        assert window.start_ms == 1672531200000
        assert window.start_seconds == 1672531200
        assert window.end_seconds - window.start_seconds == 86400
