import logging
from dataclasses import dataclass
from typing import Protocol

import psutil

from config.settings import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Environment:
    is_on_wifi: bool
    is_charging: bool


class EnvironmentProbe(Protocol):
    def snapshot(self) -> Environment: ...


class StaticEnvironmentProbe:
    """Fixed answers. Used in tests and on hosts where probing makes no sense."""

    def __init__(self, is_on_wifi: bool = True, is_charging: bool = True):
        self.environment = Environment(is_on_wifi=is_on_wifi, is_charging=is_charging)

    def snapshot(self) -> Environment:
        return self.environment


class SystemEnvironmentProbe:
    """Reads connectivity and power state from the host via psutil."""

    def __init__(self, unmetered_prefixes: list[str] | None = None):
        if unmetered_prefixes is None:
            unmetered_prefixes = settings.unmetered_interface_prefixes.split(",")
        self.unmetered_prefixes = tuple(p.strip().lower() for p in unmetered_prefixes if p.strip())

    def snapshot(self) -> Environment:
        return Environment(is_on_wifi=self._on_unmetered_network(), is_charging=self._on_power())

    def _on_unmetered_network(self) -> bool:
        for name, stats in psutil.net_if_stats().items():
            if stats.isup and name.lower().startswith(self.unmetered_prefixes):
                return True
        return False

    def _on_power(self) -> bool:
        battery = psutil.sensors_battery()
        if battery is None:
            # No battery: a desktop or server on mains power
            return True
        return bool(battery.power_plugged)
