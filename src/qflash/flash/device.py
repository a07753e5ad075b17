"""
SPI Flash Session
=================

This module drives the board's 2 MiB SPI flash (GigaDevice GD25Q16,
JEDEC ID C8 40 15) through the bootloader's command channel. It provides:

- Session setup: optional chip reset, wake from deep power-down, JEDEC check
- Completion wait: polling the status register until the busy bit clears
- Reads of any length, split into commands that fit the 16-byte reply limit
- Sector-erasing writes, programmed 8 bytes at a time

Flash Opcodes
-------------
    0x05  read status register (bit 0 = write/erase in progress)
    0x06  write enable (latch consumed by the next erase/program)
    0x0B  fast read: 3 address bytes + 1 dummy byte, then data
    0x20  sector erase (4 KiB) at 3-byte address
    0x02  page program at 3-byte address, followed by data
    0x9F  read JEDEC ID (manufacturer, device id hi, device id lo)
    0xAB  release from deep power-down
    0x66  reset enable
    0x99  reset

Write Ordering
--------------
A write proceeds strictly from the first byte to the last. At each sector
boundary the sector is erased and the erase allowed to finish before any
byte in it is programmed. If a step fails the write stops at once and
the raised FlashWriteError records how far programming got.

Risk: a failure during a sector erase leaves that whole sector undefined.
The hardware cannot abort an erase or program safely, so there is no
cancellation other than the completion-wait timeout.
"""

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Callable, Final, Iterator, Optional

from qflash.comms.framer import MAX_TRANSFER_SIZE, ByteChannel, CommandFramer
from qflash.comms.serial import close_serial_port, open_serial_port
from qflash.errors import (
    CommsError,
    ConnectionError,
    DeviceIdentityError,
    EraseFailed,
    OutOfRange,
    ProgramFailed,
    TimeoutError,
    UnalignedAddress,
)
from qflash.flash.regions import PAGE_CHUNK, ROM_SIZE, SECTOR_SIZE

if TYPE_CHECKING:
    from qflash.config import FlashConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Flash Constants
# =============================================================================

CMD_READ_STATUS: Final[int] = 0x05
CMD_WRITE_ENABLE: Final[int] = 0x06
CMD_FAST_READ: Final[int] = 0x0B
CMD_SECTOR_ERASE: Final[int] = 0x20
CMD_PAGE_PROGRAM: Final[int] = 0x02
CMD_READ_JEDEC_ID: Final[int] = 0x9F
CMD_WAKE: Final[int] = 0xAB
CMD_RESET_ENABLE: Final[int] = 0x66
CMD_RESET: Final[int] = 0x99

# Status register bit 0: write/erase in progress
STATUS_WIP: Final[int] = 1 << 0

# Manufacturer, device id hi, device id lo
SUPPORTED_JEDEC_ID: Final[bytes] = bytes([0xC8, 0x40, 0x15])

# Sleep between status polls
POLL_INTERVAL: Final[float] = 0.010

# Status must be readable this quickly while connecting
CONNECT_STATUS_TIMEOUT: Final[float] = 1.0

DEFAULT_LATENCY: Final[float] = 1.0

ERASED_BYTE: Final[int] = 0xFF


class WriteStep(Enum):
    """Kind of step reported to a write progress callback."""

    ERASE = "erase"
    PROGRAM = "program"


# Progress callbacks
ReadProgress = Callable[[int, int], None]
WriteProgress = Callable[[WriteStep, int, int], None]


def _address_bytes(address: int) -> bytes:
    """24-bit big-endian address as sent to the flash chip."""
    return bytes([(address >> 16) & 0xFF, (address >> 8) & 0xFF, address & 0xFF])


def close_channel(channel: ByteChannel) -> None:
    """
    Close a byte channel, if it can be closed.

    pyserial ports go through close_serial_port. Other channels have their
    own close() called when they provide one. Failures are logged, since
    this runs on error paths.
    """
    if hasattr(channel, "is_open"):
        close_serial_port(channel)
        return
    close = getattr(channel, "close", None)
    if close is None:
        return
    try:
        close()
    except OSError as e:
        logger.warning("Error closing channel: %s", e)


def pad_to_sector(data: bytes) -> bytes:
    """Extend data with 0xFF to a whole number of sectors."""
    remainder = len(data) % SECTOR_SIZE
    if remainder == 0:
        return bytes(data)
    return bytes(data) + bytes([ERASED_BYTE]) * (SECTOR_SIZE - remainder)


# =============================================================================
# Flash Device
# =============================================================================

class FlashDevice:
    """
    An open session with the board's SPI flash.

    The device owns the byte channel it is given and closes it exactly
    once, from close() or on leaving a `with` block.

    Usage:
        with open_device(config) as device:
            data = device.read(0x80000, 256)
            device.write(0x80000, image)

    Attributes:
        latency: Default completion-wait timeout in seconds
        manufacturer_id: JEDEC manufacturer byte (after connect)
        device_id: JEDEC device id pair (after connect)
    """

    def __init__(
        self,
        channel: ByteChannel,
        latency: float = DEFAULT_LATENCY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the session.

        Args:
            channel: Open byte channel to the bootloader.
            latency: Completion-wait timeout used when 0 is requested.
            clock: Monotonic clock in seconds (injectable for tests).
            sleep: Sleep function in seconds (injectable for tests).
        """
        self.channel = channel
        self.framer = CommandFramer(channel)
        self.latency = latency
        self._clock = clock
        self._sleep = sleep
        self._closed = False
        self.manufacturer_id: Optional[int] = None
        self.device_id: Optional[tuple[int, int]] = None

    # -------------------------------------------------------------------------
    # Session Management
    # -------------------------------------------------------------------------

    @property
    def identified(self) -> bool:
        """True once connect() has confirmed the chip identity."""
        return self.manufacturer_id is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self, reset: bool = False) -> None:
        """
        Wake the flash chip and confirm it is the supported part.

        Args:
            reset: Send the reset-enable/reset sequence first.

        Raises:
            DeviceIdentityError: If the JEDEC ID is not C8 40 15.
            ConnectionError: If the chip does not answer.
        """
        try:
            if reset:
                logger.debug("Resetting flash chip")
                self.framer.send_command(bytes([CMD_RESET_ENABLE]), 0)
                self.framer.send_command(bytes([CMD_RESET]), 0)

            self.framer.send_command(bytes([CMD_WAKE]), 1)
            jedec = self.framer.send_command(bytes([CMD_READ_JEDEC_ID]), 3)
        except CommsError as e:
            raise ConnectionError(
                f"board not in programming mode or not responding: {e}"
            ) from e

        if jedec != SUPPORTED_JEDEC_ID:
            raise DeviceIdentityError(SUPPORTED_JEDEC_ID, jedec)

        try:
            self.await_status(0, 0, CONNECT_STATUS_TIMEOUT)
        except CommsError as e:
            raise ConnectionError(f"failed to read status: {e}") from e

        self.manufacturer_id = jedec[0]
        self.device_id = (jedec[1], jedec[2])
        logger.info(
            "Flash identified: MID=0x%02X, DID=0x%02X,0x%02X",
            jedec[0], jedec[1], jedec[2],
        )

    def close(self) -> None:
        """Release the byte channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        close_channel(self.channel)

    def __enter__(self) -> "FlashDevice":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Status and Completion Wait
    # -------------------------------------------------------------------------

    def read_status(self) -> int:
        """Read the flash status register."""
        return self.framer.send_command(bytes([CMD_READ_STATUS]), 1)[0]

    def write_enable(self) -> None:
        """Set the write-enable latch for the next erase/program command."""
        self.framer.send_command(bytes([CMD_WRITE_ENABLE]), 0)

    def await_status(self, mask: int, desired: int, timeout: float = 0.0) -> None:
        """
        Poll the status register until (status & mask) == desired.

        Args:
            mask: Bits of the status register to test.
            desired: Required value of the masked bits.
            timeout: Seconds to keep polling; 0 selects self.latency.

        Raises:
            TimeoutError: If the deadline passes without a match.
            TransportReadFailed/TransportWriteFailed: On I/O failure.
        """
        if not timeout:
            timeout = self.latency
        deadline = self._clock() + timeout

        while True:
            status = self.read_status()
            if status & mask == desired:
                return
            if self._clock() >= deadline:
                raise TimeoutError(mask, desired, status, timeout)
            self._sleep(POLL_INTERVAL)

    def await_ready(self, timeout: float = 0.0) -> None:
        """Wait for any erase/program in progress to finish."""
        self.await_status(STATUS_WIP, 0, timeout)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read(
        self,
        address: int,
        length: int,
        progress: Optional[ReadProgress] = None,
    ) -> bytes:
        """
        Read length bytes starting at address.

        Each command stays inside the 16-byte window containing its
        start address, so an unaligned read begins with a short command
        and continues on 16-byte boundaries.

        Raises:
            OutOfRange: If [address, address+length) is not inside the chip.
        """
        if address < 0 or length < 0 or address + length > ROM_SIZE:
            raise OutOfRange(address, length, 0, ROM_SIZE, "data read")

        logger.debug("Read [0x%06x,0x%06x)", address, address + length)

        result = bytearray()
        remaining = length
        while remaining > 0:
            delta = min(MAX_TRANSFER_SIZE - (address % MAX_TRANSFER_SIZE), remaining)
            cmd = bytes([CMD_FAST_READ]) + _address_bytes(address) + b"\x00"
            result.extend(self.framer.send_command(cmd, delta))
            address += delta
            remaining -= delta
            if progress:
                progress(length - remaining, length)

        return bytes(result)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def write(
        self,
        address: int,
        data: bytes,
        progress: Optional[WriteProgress] = None,
    ) -> None:
        """
        Erase and program flash starting at a sector boundary.

        Data that does not fill its last sector is padded with 0xFF, so
        the whole of every touched sector is rewritten.

        Args:
            address: Start address, a multiple of 4096.
            data: Bytes to program.
            progress: Optional callback(step, bytes_done, total).

        Raises:
            UnalignedAddress: If address is not sector aligned (no I/O done).
            OutOfRange: If the padded data does not fit on the chip.
            EraseFailed: If a sector erase did not complete.
            ProgramFailed: If a page program did not complete.
        """
        if address % SECTOR_SIZE != 0:
            raise UnalignedAddress(address, SECTOR_SIZE)

        padded = pad_to_sector(data)
        total = len(padded)
        if address < 0 or address + total > ROM_SIZE:
            raise OutOfRange(address, total, 0, ROM_SIZE, "data write")

        logger.debug(
            "Write [0x%06x,0x%06x) (%d bytes, %d padding)",
            address, address + total, len(data), total - len(data),
        )

        start = address
        offset = 0
        while offset < total:
            if address % SECTOR_SIZE == 0:
                if progress:
                    progress(WriteStep.ERASE, offset, total)
                try:
                    self._erase_sector(address)
                except CommsError as e:
                    raise EraseFailed(address, address, str(e)) from e

            delta = min(PAGE_CHUNK, total - offset)
            try:
                self._program(address, padded[offset:offset + delta])
            except CommsError as e:
                raise ProgramFailed(address, address, str(e)) from e

            address += delta
            offset += delta
            if progress:
                progress(WriteStep.PROGRAM, offset, total)

        logger.debug("Wrote 0x%x bytes at 0x%06x", total, start)

    def _erase_sector(self, address: int) -> None:
        self.write_enable()
        self.framer.send_command(bytes([CMD_SECTOR_ERASE]) + _address_bytes(address), 0)
        self.await_ready()

    def _program(self, address: int, chunk: bytes) -> None:
        self.write_enable()
        self.framer.send_command(
            bytes([CMD_PAGE_PROGRAM]) + _address_bytes(address) + chunk, 0
        )
        self.await_ready()


# =============================================================================
# Session Factory
# =============================================================================

@contextmanager
def open_device(
    config: Optional["FlashConfig"] = None,
    channel: Optional[ByteChannel] = None,
    **device_kwargs,
) -> Iterator[FlashDevice]:
    """
    Open, identify and finally close a flash session.

    Args:
        config: Session settings; the process default when None.
        channel: Use this already-open channel instead of opening
                 config.port (the session still closes it).
        **device_kwargs: Extra FlashDevice arguments (clock, sleep).

    Yields:
        A connected FlashDevice.

    Raises:
        ConnectionError: If the port cannot be opened or the chip is not
                         identified. The channel is closed in either case.
    """
    if config is None:
        from qflash.config import get_default_config
        config = get_default_config()

    if channel is None:
        logger.info("Opening %s", config.port)
        channel = open_serial_port(
            config.port,
            baud_rate=config.baud_rate,
            timeout=config.read_timeout,
        )

    device = None
    try:
        device = FlashDevice(channel, latency=config.latency, **device_kwargs)
        device.connect(reset=config.reset)
        yield device
    finally:
        if device is not None:
            device.close()
        else:
            close_channel(channel)
