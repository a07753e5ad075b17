"""
qflash Communication Module
===========================

Low-level communication with the board's bootloader over USB serial.

Module Structure
----------------
- **crc**: xcrc32 checksum used in region metadata
- **framer**: command framing for the SPI passthrough protocol
- **serial**: serial port utilities (enumeration, configuration)

Quick Start
-----------
    from qflash.comms import CommandFramer, open_serial_port, close_serial_port

    port = open_serial_port('/dev/ttyACM0')
    try:
        framer = CommandFramer(port)
        mid, did_hi, did_lo = framer.send_command(b"\\x9f", 3)
    finally:
        close_serial_port(port)

Most callers should use qflash.flash.open_device() instead, which wraps
this in a session that identifies the chip and closes the port.

Thread Safety
-------------
Nothing here is thread-safe. The protocol allows only one outstanding
command, so use a port from a single thread.
"""

from qflash.comms.crc import (
    CRC_CHECK_VALUE,
    CRC_INITIAL,
    CRC_POLYNOMIAL,
    CRC_TABLE,
    crc32,
    crc32_bitwise,
    verify_crc,
)

from qflash.comms.framer import (
    COMMAND_TAG,
    HEADER_SIZE,
    MAX_TRANSFER_SIZE,
    ByteChannel,
    CommandFramer,
    build_command,
)

from qflash.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    close_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)

__all__ = [
    # CRC
    "CRC_CHECK_VALUE",
    "CRC_INITIAL",
    "CRC_POLYNOMIAL",
    "CRC_TABLE",
    "crc32",
    "crc32_bitwise",
    "verify_crc",
    # Framer
    "COMMAND_TAG",
    "HEADER_SIZE",
    "MAX_TRANSFER_SIZE",
    "ByteChannel",
    "CommandFramer",
    "build_command",
    # Serial
    "DEFAULT_BAUD_RATE",
    "VALID_BAUD_RATES",
    "PortInfo",
    "close_serial_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_port",
]
