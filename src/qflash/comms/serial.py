"""
USB Serial Link to the Bootloader
=================================

While in programming mode the board's bootloader enumerates as a USB
CDC-ACM device (VID:PID 1d50:6140). On Linux it appears as
/dev/serial/by-id/usb-1d50_6140-if00.

The link is a plain byte stream. CDC-ACM ignores the line settings, but
the port is still opened 8N1 at 115200 with all flow control off, which
is what the bootloader firmware expects from a real UART bridge.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from qflash.errors import ConnectionError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

VALID_BAUD_RATES: Final[tuple[int, ...]] = (9600, 19200, 38400, 57600, 115200, 230400)

DEFAULT_BAUD_RATE: Final[int] = 115200

# Seconds to wait for reply bytes before a read counts as failed
DEFAULT_TIMEOUT: Final[float] = 1.0

# USB identity of the bootloader in programming mode
BOARD_VID: Final[int] = 0x1D50
BOARD_PID: Final[int] = 0x6140

# Lower-cased fragments of pyserial open errors, and what to tell the user
_OPEN_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("permission denied",),
     "permission denied; add your user to the 'dialout' group"),
    (("no such file", "not found", "cannot find"),
     "port not found; is the board in programming mode? "
     "Run 'qflash ports' to see what is connected"),
    (("busy", "in use", "access is denied"),
     "port is busy; close any other program using it"),
)


# =============================================================================
# Port Enumeration
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    A serial port reported by the operating system.

    vid/pid are None for ports that are not USB devices.
    """

    device: str
    description: str
    manufacturer: Optional[str]
    product: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def is_board(self) -> bool:
        """True if this looks like a board in programming mode."""
        return self.vid == BOARD_VID and self.pid == BOARD_PID

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.is_board:
            text += " [board]"
        return text


def list_serial_ports() -> list[PortInfo]:
    """Enumerate the serial ports on this machine."""
    found = [
        PortInfo(
            device=p.device,
            description=p.description or "",
            manufacturer=p.manufacturer,
            product=p.product,
            serial_number=p.serial_number,
            vid=p.vid,
            pid=p.pid,
        )
        for p in serial.tools.list_ports.comports()
    ]
    logger.debug(
        "%d serial port(s), %d board(s)",
        len(found), sum(1 for p in found if p.is_board),
    )
    return found


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Render ports for `qflash ports`, one per line.

    With verbose, USB ids, manufacturer and serial number follow each
    port on indented lines.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        lines.append(f"  {port}")
        if not verbose:
            continue
        if port.manufacturer:
            lines.append(f"    Manufacturer: {port.manufacturer}")
        if port.is_usb:
            lines.append(f"    USB VID:PID: {port.vid:04X}:{port.pid or 0:04X}")
        if port.serial_number:
            lines.append(f"    Serial: {port.serial_number}")

    return "\n".join(lines)


# =============================================================================
# Open and Close
# =============================================================================

def _describe_open_error(device: str, error: serial.SerialException) -> str:
    message = str(error).lower()
    for fragments, hint in _OPEN_HINTS:
        if any(f in message for f in fragments):
            return f"{device}: {hint}"
    return f"unable to open serial port {device}: {error}"


def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open the bootloader's serial port.

    Both buffers are flushed so no stale reply from an earlier session
    can be mistaken for the first reply of this one.

    Args:
        device: Serial device path.
        baud_rate: One of VALID_BAUD_RATES.
        timeout: Read timeout in seconds.

    Raises:
        ValueError: If baud_rate is not supported.
        ConnectionError: If the port cannot be opened.
    """
    if baud_rate not in VALID_BAUD_RATES:
        raise ValueError(
            f"Invalid baud rate: {baud_rate} "
            f"(expected one of {', '.join(map(str, VALID_BAUD_RATES))})"
        )

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
    except serial.SerialException as e:
        raise ConnectionError(_describe_open_error(device, e)) from e

    port.reset_input_buffer()
    port.reset_output_buffer()
    logger.debug("Opened %s at %d baud (timeout %.2fs)", device, baud_rate, timeout)
    return port


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """
    Close a port if it is open.

    Failures are logged, not raised, since this runs on error paths
    where a new exception would replace the one being reported.
    """
    if port is None or not port.is_open:
        return
    try:
        port.close()
    except (OSError, serial.SerialException) as e:
        logger.warning("Error closing serial port: %s", e)
    else:
        logger.debug("Serial port closed")
