"""Pure gating decisions for background scans and queue draining.

Every function here is deterministic: the caller passes the settings snapshot,
the current time and the environment, nothing is read from global state.
`now` should carry the user's local offset, since the time window is
expressed in minutes of the local day.
"""

from datetime import UTC, datetime, timedelta

from services.captions.models import ScanFrequency, ScanPolicyConfig, TimeWindow

ONE_DAY = timedelta(days=1)

FREQUENCY_DAYS = {
    ScanFrequency.DAILY: 1,
    ScanFrequency.WEEKLY: 7,
}


def minute_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def in_time_window(window: TimeWindow, minute: int) -> bool:
    """Inclusive on both ends. A window whose start is after its end wraps midnight."""
    start, end = window.start_minute_of_day, window.end_minute_of_day
    if window.wraps_midnight:
        return minute >= start or minute <= end
    return start <= minute <= end


def required_interval_days(config: ScanPolicyConfig) -> int:
    return FREQUENCY_DAYS.get(config.frequency, config.custom_days)


def days_since(last: datetime, now: datetime) -> int:
    return (_aware(now) - _aware(last)) // ONE_DAY


def environment_permits(
    config: ScanPolicyConfig,
    now: datetime,
    is_on_wifi: bool,
    is_charging: bool,
) -> bool:
    """Network, power and time-of-day gates, without the scan frequency."""
    if config.wifi_only and not is_on_wifi:
        return False
    if config.charging_only and not is_charging:
        return False
    if config.time_window.enabled and not in_time_window(config.time_window, minute_of_day(now)):
        return False
    return True


def should_scan(
    config: ScanPolicyConfig,
    now: datetime,
    is_on_wifi: bool,
    is_charging: bool,
) -> bool:
    """Whether a background scan pass is allowed right now."""
    if not config.auto_scan_enabled:
        return False
    if not environment_permits(config, now, is_on_wifi, is_charging):
        return False
    if config.last_scan_at is None:
        return True
    return days_since(config.last_scan_at, now) >= required_interval_days(config)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
