"""
qflash Testing Framework - Simulated Board
==========================================

An in-memory stand-in for the board's bootloader and its SPI flash chip.
It accepts the same framed commands as the real bootloader through
write() and returns replies through read(), so it can be handed to
FlashDevice anywhere a serial.Serial would be.

Simulated behaviour:
- 2 MiB of flash, initially erased (0xFF)
- JEDEC ID (configurable, default C8 40 15)
- Write-enable latch, consumed by each erase/program
- Sector erase sets 4 KiB to 0xFF
- Page program can only clear bits (new = old & data), wrapping inside
  a 256-byte page like the real chip
- Busy (WIP) bit that stays set for a configurable number of status reads
- Erase/program commands sent while busy or without write-enable are
  ignored, as the real chip does, and recorded in `violations`

Fault injection:
- fail_write_on / fail_read_on: opcodes whose command write or reply
  read raises OSError
- short_reply_on: opcodes whose reply is truncated
- stuck_busy: the WIP bit never clears
- max_read_chunk: cap on bytes returned per read() call

Copyright (c) 2025-2026 qflash contributors
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from qflash.flash.device import (
    CMD_FAST_READ,
    CMD_PAGE_PROGRAM,
    CMD_READ_JEDEC_ID,
    CMD_READ_STATUS,
    CMD_RESET,
    CMD_RESET_ENABLE,
    CMD_SECTOR_ERASE,
    CMD_WAKE,
    CMD_WRITE_ENABLE,
    STATUS_WIP,
    SUPPORTED_JEDEC_ID,
)
from qflash.flash.regions import ROM_SIZE, SECTOR_SIZE

CMD_READ: int = 0x03
CMD_WRITE_DISABLE: int = 0x04

# Status register bit 1: write enable latch
STATUS_WEL: int = 1 << 1

# Program wraps within this page size
PROGRAM_PAGE_SIZE: int = 256

# Device ID returned by the release-from-power-down command
WAKE_DEVICE_ID: int = 0x14


@dataclass(frozen=True)
class SimCommand:
    """One command received by the simulator."""

    payload: bytes
    reply_length: int

    @property
    def opcode(self) -> Optional[int]:
        return self.payload[0] if self.payload else None

    @property
    def address(self) -> Optional[int]:
        """24-bit address for addressed commands, else None."""
        if self.opcode in (CMD_FAST_READ, CMD_READ, CMD_SECTOR_ERASE, CMD_PAGE_PROGRAM) \
                and len(self.payload) >= 4:
            return (self.payload[1] << 16) | (self.payload[2] << 8) | self.payload[3]
        return None

    @property
    def data(self) -> bytes:
        """Program data carried by a page-program command."""
        if self.opcode == CMD_PAGE_PROGRAM:
            return self.payload[4:]
        return b""


@dataclass
class SimulatedFlash:
    """
    Simulated bootloader + SPI flash, usable as a byte channel.

    Example:
        sim = SimulatedFlash()
        with open_device(FlashConfig(), channel=sim) as device:
            device.write(0x80000, b"hello")
        assert sim.memory[0x80000:0x80005] == b"hello"
    """

    jedec_id: bytes = SUPPORTED_JEDEC_ID
    erase_busy_polls: int = 3
    program_busy_polls: int = 1
    stuck_busy: bool = False
    max_read_chunk: Optional[int] = None
    fail_write_on: set[int] = field(default_factory=set)
    fail_read_on: set[int] = field(default_factory=set)
    short_reply_on: set[int] = field(default_factory=set)

    memory: bytearray = field(default_factory=lambda: bytearray(b"\xff" * ROM_SIZE))
    commands: list[SimCommand] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)

    is_open: bool = True
    close_count: int = 0

    _write_enabled: bool = False
    _busy_polls: int = 0
    _reset_enabled: bool = False
    _reply: bytearray = field(default_factory=bytearray)
    _fail_next_read: bool = False

    # -------------------------------------------------------------------------
    # Byte Channel Interface
    # -------------------------------------------------------------------------

    def write(self, frame: bytes) -> int:
        if not self.is_open:
            raise OSError("port closed")
        frame = bytes(frame)
        if len(frame) < 5 or frame[0] != 0x01:
            self.violations.append(f"bad frame header: {frame[:5].hex()}")
            return len(frame)

        send = frame[1] | (frame[2] << 8)
        expect = frame[3] | (frame[4] << 8)
        payload = frame[5:]
        if len(payload) != send:
            self.violations.append(
                f"payload length {len(payload)} != header length {send}"
            )
        if self._reply:
            self.violations.append("command sent before previous reply was read")
            self._reply.clear()

        command = SimCommand(payload, expect)
        self.commands.append(command)

        if command.opcode in self.fail_write_on:
            raise OSError(f"simulated write failure on 0x{command.opcode:02X}")

        reply = self._execute(command)
        reply = (reply + b"\xff" * expect)[:expect]
        if command.opcode in self.short_reply_on:
            reply = reply[: expect // 2]
        self._fail_next_read = command.opcode in self.fail_read_on
        self._reply.extend(reply)
        return len(frame)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise OSError("port closed")
        if self._fail_next_read:
            self._fail_next_read = False
            self._reply.clear()
            raise OSError("simulated read failure")
        if self.max_read_chunk is not None:
            size = min(size, self.max_read_chunk)
        chunk = bytes(self._reply[:size])
        del self._reply[:size]
        return chunk

    def close(self) -> None:
        self.is_open = False
        self.close_count += 1

    # -------------------------------------------------------------------------
    # Inspection Helpers
    # -------------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.stuck_busy or self._busy_polls > 0

    def opcodes(self) -> list[Optional[int]]:
        """Opcodes of all commands received, in order."""
        return [c.opcode for c in self.commands]

    def commands_with(self, opcode: int) -> list[SimCommand]:
        return [c for c in self.commands if c.opcode == opcode]

    def set_busy(self, polls: int) -> None:
        """Report busy for the next `polls` status reads."""
        self._busy_polls = polls

    def load(self, address: int, data: bytes) -> None:
        """Place data directly in flash, bypassing the command channel."""
        self.memory[address:address + len(data)] = data

    # -------------------------------------------------------------------------
    # Command Execution
    # -------------------------------------------------------------------------

    def _execute(self, command: SimCommand) -> bytes:
        opcode = command.opcode

        if opcode == CMD_READ_STATUS:
            status = 0
            if self.busy:
                status |= STATUS_WIP
                if self._busy_polls > 0:
                    self._busy_polls -= 1
            if self._write_enabled:
                status |= STATUS_WEL
            return bytes([status])

        if opcode == CMD_READ_JEDEC_ID:
            return bytes(self.jedec_id)

        if opcode == CMD_WAKE:
            return bytes([WAKE_DEVICE_ID])

        if opcode == CMD_RESET_ENABLE:
            self._reset_enabled = True
            return b""

        if opcode == CMD_RESET:
            if self._reset_enabled:
                self._write_enabled = False
                self._busy_polls = 0
            self._reset_enabled = False
            return b""

        self._reset_enabled = False

        if self.busy and opcode != CMD_READ_STATUS:
            if opcode in (CMD_SECTOR_ERASE, CMD_PAGE_PROGRAM, CMD_WRITE_ENABLE):
                self.violations.append(f"0x{opcode:02X} sent while busy")
                return b""

        if opcode == CMD_WRITE_ENABLE:
            self._write_enabled = True
            return b""

        if opcode == CMD_WRITE_DISABLE:
            self._write_enabled = False
            return b""

        if opcode in (CMD_FAST_READ, CMD_READ):
            address = command.address
            if address is None:
                self.violations.append("read without address")
                return b""
            if opcode == CMD_FAST_READ and len(command.payload) < 5:
                self.violations.append("fast read without dummy byte")
            end = address + command.reply_length
            return bytes(self.memory[address:end])

        if opcode == CMD_SECTOR_ERASE:
            return self._erase(command)

        if opcode == CMD_PAGE_PROGRAM:
            return self._program(command)

        self.violations.append(f"unsupported opcode {opcode!r}")
        return b""

    def _erase(self, command: SimCommand) -> bytes:
        if not self._write_enabled:
            self.violations.append("sector erase without write enable")
            return b""
        self._write_enabled = False
        start = command.address & ~(SECTOR_SIZE - 1)
        self.memory[start:start + SECTOR_SIZE] = b"\xff" * SECTOR_SIZE
        self._busy_polls = self.erase_busy_polls
        return b""

    def _program(self, command: SimCommand) -> bytes:
        if not self._write_enabled:
            self.violations.append("page program without write enable")
            return b""
        self._write_enabled = False
        address = command.address
        page = address & ~(PROGRAM_PAGE_SIZE - 1)
        for i, byte in enumerate(command.data):
            target = page + ((address - page + i) % PROGRAM_PAGE_SIZE)
            old = self.memory[target]
            if old & byte != byte:
                self.violations.append(
                    f"program 0x{byte:02X} over unerased 0x{old:02X} at 0x{target:06x}"
                )
            self.memory[target] = old & byte
        self._busy_polls = self.program_busy_polls
        return b""


class FakeClock:
    """
    Manually advanced clock for completion-wait tests.

    Pass `clock` and `sleep` to FlashDevice; each sleep advances time
    instead of blocking.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
