from datetime import UTC, datetime, timedelta

import pytest

from services.captions.models import ScanFrequency, ScanPolicyConfig, TimeWindow
from services.captions.policy import (
    days_since,
    environment_permits,
    in_time_window,
    required_interval_days,
    should_scan,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def policy(**overrides) -> ScanPolicyConfig:
    values = {"auto_scan_enabled": True, "wifi_only": False, "charging_only": False}
    values.update(overrides)
    return ScanPolicyConfig(**values)


class TestShouldScan:
    def test_disabled_never_scans(self):
        assert not should_scan(policy(auto_scan_enabled=False), NOW, True, True)

    def test_first_scan_allowed_when_never_scanned(self):
        assert should_scan(policy(), NOW, True, True)

    def test_wifi_only_blocks_off_wifi(self):
        config = policy(wifi_only=True)
        assert not should_scan(config, NOW, False, True)
        assert should_scan(config, NOW, True, True)

    def test_charging_only_blocks_on_battery(self):
        config = policy(charging_only=True)
        assert not should_scan(config, NOW, True, False)
        assert should_scan(config, NOW, True, True)

    def test_daily_after_25_hours(self):
        config = policy(last_scan_at=NOW - timedelta(hours=25))
        assert should_scan(config, NOW, True, True)

    def test_daily_not_after_23_hours(self):
        config = policy(last_scan_at=NOW - timedelta(hours=23))
        assert not should_scan(config, NOW, True, True)

    def test_weekly(self):
        six_days = policy(frequency=ScanFrequency.WEEKLY, last_scan_at=NOW - timedelta(days=6))
        seven_days = policy(frequency=ScanFrequency.WEEKLY, last_scan_at=NOW - timedelta(days=7))
        assert not should_scan(six_days, NOW, True, True)
        assert should_scan(seven_days, NOW, True, True)

    def test_custom_interval(self):
        config = policy(
            frequency=ScanFrequency.CUSTOM,
            custom_days=3,
            last_scan_at=NOW - timedelta(days=2, hours=23),
        )
        assert not should_scan(config, NOW, True, True)
        assert should_scan(config, NOW + timedelta(hours=1), True, True)

    def test_outside_time_window(self):
        window = TimeWindow(enabled=True, start_minute_of_day=9 * 60, end_minute_of_day=11 * 60)
        assert not should_scan(policy(time_window=window), NOW, True, True)

    def test_inside_time_window(self):
        window = TimeWindow(enabled=True, start_minute_of_day=9 * 60, end_minute_of_day=13 * 60)
        assert should_scan(policy(time_window=window), NOW, True, True)

    def test_naive_last_scan_treated_as_utc(self):
        config = policy(last_scan_at=datetime(2024, 5, 31, 11, 0))
        assert should_scan(config, NOW, True, True)


class TestTimeWindow:
    @pytest.mark.parametrize(
        ("minute", "expected"),
        [(540, True), (1260, True), (539, False), (1261, False), (720, True)],
    )
    def test_inclusive_bounds(self, minute, expected):
        window = TimeWindow(enabled=True, start_minute_of_day=540, end_minute_of_day=1260)
        assert in_time_window(window, minute) is expected

    @pytest.mark.parametrize(
        ("minute", "expected"),
        [(23 * 60 + 30, True), (3 * 60, True), (22 * 60, True), (6 * 60, True), (12 * 60, False)],
    )
    def test_wraps_midnight(self, minute, expected):
        window = TimeWindow(enabled=True, start_minute_of_day=22 * 60, end_minute_of_day=6 * 60)
        assert window.wraps_midnight
        assert in_time_window(window, minute) is expected

    def test_parses_clock_strings(self):
        window = TimeWindow(enabled=True, start_minute_of_day="22:30", end_minute_of_day="06:15")
        assert window.start_minute_of_day == 22 * 60 + 30
        assert window.end_minute_of_day == 6 * 60 + 15

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            TimeWindow(start_minute_of_day=1440)


def test_environment_permits_ignores_frequency():
    config = policy(wifi_only=True, last_scan_at=NOW - timedelta(minutes=5))
    assert not should_scan(config, NOW, True, True)
    assert environment_permits(config, NOW, True, True)
    assert not environment_permits(config, NOW, False, True)


def test_required_interval_days():
    assert required_interval_days(policy(frequency=ScanFrequency.DAILY)) == 1
    assert required_interval_days(policy(frequency=ScanFrequency.WEEKLY)) == 7
    assert required_interval_days(policy(frequency=ScanFrequency.CUSTOM, custom_days=5)) == 5


def test_days_since_floors():
    assert days_since(NOW - timedelta(hours=47), NOW) == 1
    assert days_since(NOW - timedelta(hours=48), NOW) == 2
