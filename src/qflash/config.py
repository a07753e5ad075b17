"""
qflash Configuration
====================

Session settings for talking to the board. Configuration can come from:
- Default values (defined here)
- Environment variables (FlashConfig.from_env)
- Command-line options (applied by the CLI on top of the above)

Environment variables (all optional):
    QFLASH_PORT: Serial device path
    QFLASH_BAUD: Baud rate (integer)
    QFLASH_LATENCY: Seconds to wait for an erase/program to finish
    QFLASH_PROTECT: Protection boundary, decimal or 0x-prefixed hex
    QFLASH_RESET: Reset the flash chip on connect (1/true/yes)
    QFLASH_PROGRESS: Show progress bars (1/true/yes)
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

from qflash.comms.serial import DEFAULT_BAUD_RATE, DEFAULT_TIMEOUT
from qflash.flash.protection import DEFAULT_PROTECT_BOUNDARY

DEFAULT_PORT = "/dev/serial/by-id/usb-1d50_6140-if00"

DEFAULT_LATENCY = 1.0

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass
class FlashConfig:
    """
    Settings for a flash session.

    Attributes:
        port: Serial device of the board in programming mode
        baud_rate: Serial baud rate
        latency: Default time (seconds) to wait for the flash busy bit to
                 clear; used whenever a wait is requested with timeout 0
        read_timeout: Serial read timeout (seconds) for command replies
        protect: Addresses below this are refused for writes/disable
        reset: Send the chip reset sequence before identifying it
        progress: Show progress output in the CLI
    """

    port: str = DEFAULT_PORT
    baud_rate: int = DEFAULT_BAUD_RATE
    latency: float = DEFAULT_LATENCY
    read_timeout: float = DEFAULT_TIMEOUT
    protect: int = DEFAULT_PROTECT_BOUNDARY
    reset: bool = False
    progress: bool = True

    def __post_init__(self) -> None:
        if self.latency <= 0:
            raise ValueError(f"latency must be positive, got {self.latency}")
        if self.protect < 0:
            raise ValueError(f"protect must not be negative, got {self.protect}")

    def with_overrides(self, **overrides) -> "FlashConfig":
        """Copy of this config with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> "FlashConfig":
        """
        Create FlashConfig from environment variables.

        Raises:
            ValueError: If a variable is set to an unparsable value.
        """
        config = cls()

        if port := os.environ.get("QFLASH_PORT"):
            config.port = port

        if baud := os.environ.get("QFLASH_BAUD"):
            config.baud_rate = _parse_int("QFLASH_BAUD", baud)

        if latency := os.environ.get("QFLASH_LATENCY"):
            try:
                config.latency = float(latency)
            except ValueError:
                raise ValueError(
                    f"QFLASH_LATENCY must be a number of seconds, got {latency!r}"
                ) from None
            if config.latency <= 0:
                raise ValueError(f"QFLASH_LATENCY must be positive, got {latency!r}")

        if protect := os.environ.get("QFLASH_PROTECT"):
            config.protect = _parse_int("QFLASH_PROTECT", protect)
            if config.protect < 0:
                raise ValueError(f"QFLASH_PROTECT must not be negative, got {protect!r}")

        if (reset := os.environ.get("QFLASH_RESET")) is not None:
            config.reset = _parse_bool("QFLASH_RESET", reset)

        if (progress := os.environ.get("QFLASH_PROGRESS")) is not None:
            config.progress = _parse_bool("QFLASH_PROGRESS", progress)

        return config


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (1/0, true/false), got {value!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# GLOBAL DEFAULT
# ═══════════════════════════════════════════════════════════════════════════════

_default_config: Optional[FlashConfig] = None


def get_default_config() -> FlashConfig:
    """
    Get the process-wide default configuration.

    Built from the environment on first use.
    """
    global _default_config
    if _default_config is None:
        _default_config = FlashConfig.from_env()
    return _default_config


def set_default_config(config: Optional[FlashConfig]) -> None:
    """Replace the process-wide default (None rebuilds it from the environment)."""
    global _default_config
    _default_config = config
