"""
Device context provider: platform, OS, locale and timezone lookups.
"""

import locale
import platform
import sys
from datetime import datetime
from typing import Optional


class DeviceContextProvider:
    """Opaque source of device facts. Every value except platform may be None."""

    def platform(self) -> str:
        raise NotImplementedError

    def os_version(self) -> Optional[str]:
        return None

    def device_manufacturer(self) -> Optional[str]:
        return None

    def locale(self) -> Optional[str]:
        return None

    def timezone(self) -> Optional[str]:
        return None


class SystemDeviceContextProvider(DeviceContextProvider):
    """Reads device facts from the running interpreter."""

    _PLATFORMS = {
        "darwin": "macos",
        "win32": "windows",
        "cygwin": "windows",
        "linux": "linux",
        "ios": "ios",
        "android": "android",
        "emscripten": "web",
        "wasi": "web",
    }

    def platform(self) -> str:
        for prefix, name in self._PLATFORMS.items():
            if sys.platform.startswith(prefix):
                return name
        return "unknown"

    def os_version(self) -> Optional[str]:
        return platform.release() or None

    def device_manufacturer(self) -> Optional[str]:
        if self.platform() in ("macos", "ios"):
            return "Apple"
        return None

    def locale(self) -> Optional[str]:
        lang, _ = locale.getlocale()
        return lang

    def timezone(self) -> Optional[str]:
        return datetime.now().astimezone().tzname()


class StaticDeviceContextProvider(DeviceContextProvider):
    """Fixed values, for hosts that know their device facts up front (and tests)."""

    def __init__(
        self,
        platform: str = "unknown",
        os_version: Optional[str] = None,
        device_manufacturer: Optional[str] = None,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
    ):
        self._platform = platform
        self._os_version = os_version
        self._device_manufacturer = device_manufacturer
        self._locale = locale
        self._timezone = timezone

    def platform(self) -> str:
        return self._platform

    def os_version(self) -> Optional[str]:
        return self._os_version

    def device_manufacturer(self) -> Optional[str]:
        return self._device_manufacturer

    def locale(self) -> Optional[str]:
        return self._locale

    def timezone(self) -> Optional[str]:
        return self._timezone
