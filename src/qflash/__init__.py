"""
qflash - SPI Flash Programmer for QuickFeather-style Boards
===========================================================

This package programs the 2 MiB SPI flash of a board whose USB
bootloader passes SPI commands through a serial channel. It can read
and write any part of the flash, and keeps each region's metadata
record (size, CRC, presence) consistent with what was written so the
bootloader accepts the new image.

Main Components
---------------
- **comms**: command framing, serial port handling and the xcrc32 checksum
- **flash**: flash session, region table, metadata codec and region
  operations
- **config**: session settings (port, latency, protection boundary)
- **cli**: the `qflash` command-line tool
- **testkit**: simulated board for tests

Quick Start
-----------
Flash an application image and verify it:
    >>> from qflash.config import FlashConfig
    >>> from qflash.flash import open_device, lookup_region, write_region, validate_region
    >>> config = FlashConfig(port="/dev/ttyACM0")
    >>> with open_device(config) as device:
    ...     write_region(device, lookup_region("app"), image, protect=config.protect)
    ...     validate_region(device, "app")

Or use the command-line tool:
    $ qflash write --section app firmware.bin
    $ qflash check app

Version History
---------------
1.0.0 - Initial release with read, write, check, disable and layout
"""

__version__ = "1.0.0"
__author__ = "qflash contributors"

# =============================================================================
# Public API Exports
# =============================================================================

from qflash.errors import (
    QFlashError,
    CommsError,
    ConnectionError as QFlashConnectionError,  # Avoid collision with builtin
    DeviceIdentityError,
    ProtocolError,
    ProtocolLimitExceeded,
    TransportError,
    TransportReadFailed,
    TransportWriteFailed,
    TimeoutError as QFlashTimeoutError,  # Avoid collision with builtin
    FlashError,
    AddressError,
    UnalignedAddress,
    OutOfRange,
    FlashWriteError,
    EraseFailed,
    ProgramFailed,
    Protected,
    UnknownRegion,
    MalformedMetadata,
    IntegrityError,
    InvalidDeclaredSize,
    ChecksumMismatch,
)

from qflash.comms import (
    CommandFramer,
    crc32,
    list_serial_ports,
    open_serial_port,
    close_serial_port,
)

from qflash.config import FlashConfig, get_default_config, set_default_config

from qflash.flash import (
    REGIONS,
    ROM_SIZE,
    SECTOR_SIZE,
    FlashDevice,
    MetadataRecord,
    Region,
    WriteStep,
    check_writable,
    decode_metadata,
    describe_layout,
    disable_region,
    encode_metadata,
    lookup_region,
    open_device,
    read_metadata,
    read_region,
    validate_region,
    write_region,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Exception hierarchy
    "QFlashError",
    "CommsError",
    "QFlashConnectionError",
    "DeviceIdentityError",
    "ProtocolError",
    "ProtocolLimitExceeded",
    "TransportError",
    "TransportReadFailed",
    "TransportWriteFailed",
    "QFlashTimeoutError",
    "FlashError",
    "AddressError",
    "UnalignedAddress",
    "OutOfRange",
    "FlashWriteError",
    "EraseFailed",
    "ProgramFailed",
    "Protected",
    "UnknownRegion",
    "MalformedMetadata",
    "IntegrityError",
    "InvalidDeclaredSize",
    "ChecksumMismatch",
    # Communication
    "CommandFramer",
    "crc32",
    "list_serial_ports",
    "open_serial_port",
    "close_serial_port",
    # Configuration
    "FlashConfig",
    "get_default_config",
    "set_default_config",
    # Flash
    "REGIONS",
    "ROM_SIZE",
    "SECTOR_SIZE",
    "FlashDevice",
    "MetadataRecord",
    "Region",
    "WriteStep",
    "check_writable",
    "decode_metadata",
    "describe_layout",
    "disable_region",
    "encode_metadata",
    "lookup_region",
    "open_device",
    "read_metadata",
    "read_region",
    "validate_region",
    "write_region",
]
