"""
qflash Testing Framework
========================

Test doubles for exercising the flash engine without a board:

- **SimulatedFlash**: in-memory bootloader + SPI flash, accepted by
  FlashDevice in place of a serial port
- **FakeClock**: injectable clock/sleep pair for completion-wait tests

Quick Start
-----------

    from qflash.flash import FlashDevice
    from qflash.testkit import SimulatedFlash, FakeClock

    sim = SimulatedFlash()
    clock = FakeClock()
    device = FlashDevice(sim, clock=clock.clock, sleep=clock.sleep)
    device.connect()
    device.write(0x80000, b"hello")
    assert sim.memory[0x80000:0x80005] == b"hello"

Pytest fixtures live in qflash.testkit.fixtures (importing it requires
pytest).

Copyright (c) 2025-2026 qflash contributors
"""

from .simulator import (
    STATUS_WEL,
    FakeClock,
    SimCommand,
    SimulatedFlash,
)

__all__ = [
    "STATUS_WEL",
    "FakeClock",
    "SimCommand",
    "SimulatedFlash",
]
