"""
qflash Test Configuration
=========================

pytest configuration loaded for all tests under tests/.

It provides:
- Simulated board fixtures from qflash.testkit
- The hardware marker (tests skipped unless a board is attached)
"""

import pytest

from qflash.testkit.fixtures import (
    sim_flash,
    fake_clock,
    flash_device,
    flash_config,
    pytest_configure,
)
from qflash.testkit import SimulatedFlash


# Re-export fixtures so pytest can discover them
__all__ = [
    "sim_flash",
    "fake_clock",
    "flash_device",
    "flash_config",
]


# ═══════════════════════════════════════════════════════════════════════════════
# HELPER FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fast_flash() -> SimulatedFlash:
    """
    Fixture: simulated board that is never busy.

    For tests that run with the real clock (the CLI), so that no
    completion wait ever has to sleep.
    """
    return SimulatedFlash(erase_busy_polls=0, program_busy_polls=0)


@pytest.fixture
def image() -> bytes:
    """Fixture: a 112504-byte application image with varied content."""
    return bytes((i * 7 + (i >> 8)) & 0xFF for i in range(112504))
