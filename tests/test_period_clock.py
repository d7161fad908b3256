"""
Check-in Platform
Tests: period arithmetic.
"""

from datetime import date, datetime, timezone

import pytest

from checkin.services import period_clock


class TestPeriodOf:
    def test_month_key(self):
        assert period_clock.period_of(datetime(2025, 6, 14, 9, tzinfo=timezone.utc)) == "2025-06"

    def test_zero_padding(self):
        assert period_clock.period_of(date(987, 1, 1)) == "0987-01"


class TestNextPeriod:
    def test_later_month_same_year(self):
        assert period_clock.next_period([3, 6, 9], date(2025, 4, 10)) == date(2025, 6, 1)

    def test_current_month_is_skipped(self):
        assert period_clock.next_period([3, 6, 9], date(2025, 6, 30)) == date(2025, 9, 1)

    def test_wraps_to_next_year(self):
        assert period_clock.next_period([3, 6, 9], date(2025, 10, 1)) == date(2026, 3, 1)

    def test_single_month_wraps_to_itself(self):
        assert period_clock.next_period([6], date(2025, 6, 1)) == date(2026, 6, 1)

    def test_no_active_months(self):
        assert period_clock.next_period([], date(2025, 6, 1)) is None


class TestActiveMonths:
    def test_is_active_month(self):
        class _Org:
            active_months = [3, 6, 9]

        assert period_clock.is_active_month(_Org(), 6)
        assert not period_clock.is_active_month(_Org(), 7)

    def test_validate_dedupes_and_sorts(self):
        assert period_clock.validate_active_months([9, 3, 9]) == [3, 9]

    @pytest.mark.parametrize("value", [[], [0], [13], ["6"], [True], "3,6"])
    def test_validate_rejects(self, value):
        with pytest.raises(ValueError):
            period_clock.validate_active_months(value)


def test_last_day_of_month_handles_leap_years():
    assert period_clock.is_last_day_of_month(date(2024, 2, 29))
    assert period_clock.is_last_day_of_month(date(2025, 2, 28))
    assert not period_clock.is_last_day_of_month(date(2024, 2, 28))
    assert not period_clock.is_last_day_of_month(date(2025, 6, 14))


def test_as_utc_attaches_timezone_to_naive_values():
    naive = datetime(2025, 6, 1, 12, 0)
    assert period_clock.as_utc(naive).tzinfo is timezone.utc
    assert period_clock.as_utc(None) is None
