"""
qflash Testing Framework - Pytest Fixtures
==========================================

Pytest fixtures built on the simulated board:

    sim_flash     - Fresh SimulatedFlash (erased, C8 40 15)
    fake_clock    - FakeClock for completion-wait timing
    flash_device  - Connected FlashDevice on sim_flash and fake_clock
    flash_config  - FlashConfig installed as the process default

Usage:
    In your conftest.py, import the fixtures so pytest can find them:

        from qflash.testkit.fixtures import sim_flash, flash_device

    Then use in tests:

        def test_something(flash_device, sim_flash):
            flash_device.write(0x80000, b"abc")
            assert sim_flash.memory[0x80000:0x80003] == b"abc"

Copyright (c) 2025-2026 qflash contributors
"""

from __future__ import annotations

from typing import Generator

import pytest

from qflash.config import FlashConfig, set_default_config
from qflash.flash.device import FlashDevice

from .simulator import FakeClock, SimulatedFlash


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURE IMPLEMENTATIONS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def sim_flash() -> SimulatedFlash:
    """Fixture: erased simulated board reporting the supported JEDEC ID."""
    return SimulatedFlash()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Fixture: manually advanced clock; sleeps return immediately."""
    return FakeClock()


@pytest.fixture
def flash_device(sim_flash: SimulatedFlash, fake_clock: FakeClock) -> Generator[FlashDevice, None, None]:
    """
    Fixture: FlashDevice connected to sim_flash.

    The command log is cleared after connecting, so tests only see the
    commands their own operations send.
    """
    device = FlashDevice(sim_flash, clock=fake_clock.clock, sleep=fake_clock.sleep)
    device.connect()
    sim_flash.commands.clear()
    yield device
    device.close()


@pytest.fixture
def flash_config() -> Generator[FlashConfig, None, None]:
    """
    Fixture: a FlashConfig installed as the process default.

    The default is rebuilt from the environment after the test.
    """
    config = FlashConfig(port="/dev/null-qflash")
    set_default_config(config)
    yield config
    set_default_config(None)


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST HOOKS
# ═══════════════════════════════════════════════════════════════════════════════


def pytest_configure(config):
    """Register the hardware marker."""
    config.addinivalue_line(
        "markers",
        "hardware: test needs a real board in programming mode",
    )
