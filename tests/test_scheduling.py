from datetime import date

import pytest

from billing.utils import add_interval, compute_next_run_date, is_valid_frequency


class TestAddInterval:
    @pytest.mark.parametrize("frequency,expected", [
        ("weekly", date(2025, 1, 8)),
        ("biweekly", date(2025, 1, 15)),
        ("monthly", date(2025, 2, 1)),
        ("quarterly", date(2025, 4, 1)),
        ("yearly", date(2026, 1, 1)),
    ])
    def test_each_frequency(self, frequency, expected):
        assert add_interval(date(2025, 1, 1), frequency) == expected

    def test_month_end_clamps(self):
        assert add_interval(date(2025, 1, 31), "monthly") == date(2025, 2, 28)
        assert add_interval(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
        assert add_interval(date(2025, 11, 30), "quarterly") == date(2026, 2, 28)

    def test_leap_day_yearly(self):
        assert add_interval(date(2024, 2, 29), "yearly") == date(2025, 2, 28)

    def test_multiple_intervals(self):
        assert add_interval(date(2025, 1, 31), "monthly", times=2) == date(2025, 3, 31)

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            add_interval(date(2025, 1, 1), "daily")


class TestNextRunDate:
    def test_first_run_is_start_date(self):
        assert compute_next_run_date(date(2025, 1, 1), None, "monthly") == date(2025, 1, 1)

    def test_later_runs_follow_last_run(self):
        assert compute_next_run_date(date(2025, 1, 1), date(2025, 3, 1), "monthly") == date(2025, 4, 1)

    def test_rejects_unknown_frequency(self):
        assert not is_valid_frequency("fortnightly")
        with pytest.raises(ValueError):
            compute_next_run_date(date(2025, 1, 1), None, "fortnightly")
