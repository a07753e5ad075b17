"""
qflash Error Hierarchy
======================

This module defines the exception hierarchy for the whole qflash package.
All exceptions inherit from QFlashError, allowing callers to catch every
qflash-related error with a single except clause if desired.

Exception Hierarchy
-------------------
QFlashError (base)
├── CommsError (serial channel and command protocol)
│   ├── ConnectionError - cannot open port or identify device
│   │   └── DeviceIdentityError - JEDEC ID is not the supported chip
│   ├── ProtocolError - command framing violation
│   │   └── ProtocolLimitExceeded - payload/reply larger than 16 bytes
│   ├── TransportError - I/O failure on the byte channel
│   │   ├── TransportReadFailed - short or failed response read
│   │   └── TransportWriteFailed - command could not be written
│   └── TimeoutError - status register never reached desired value
└── FlashError (flash memory operations)
    ├── AddressError
    │   ├── UnalignedAddress - write not on a sector boundary
    │   └── OutOfRange - access outside the device address space
    ├── FlashWriteError - write aborted part way
    │   ├── EraseFailed - sector erase step failed
    │   └── ProgramFailed - page program step failed
    ├── Protected - address below the protection boundary
    ├── UnknownRegion - no region with that name
    ├── MalformedMetadata - metadata record too short
    └── IntegrityError
        ├── InvalidDeclaredSize - metadata size larger than region
        └── ChecksumMismatch - CRC over region data is wrong

Design Philosophy
-----------------
No operation in the core retries or terminates the process. Errors are
raised at the point of failure, carry the addresses and values needed to
diagnose the problem, and propagate to a single top-level handler (see
qflash.cli.errors).

A TimeoutError means "the device is wedged" while a TransportError means
"the cable or port is broken"; callers can tell them apart by type.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class QFlashError(Exception):
    """
    Base exception for all qflash errors.

        try:
            device.write(0x80000, image)
        except QFlashError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(QFlashError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot connect to the board.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port busy
    - Device does not answer the wake/identify sequence
    """
    pass


class DeviceIdentityError(ConnectionError):
    """
    The flash chip reported an unsupported JEDEC ID.

    The session refuses to open so that no erase or program command is
    ever sent to a chip with an unknown sector layout.
    """

    def __init__(self, expected: bytes, actual: bytes):
        self.expected = bytes(expected)
        self.actual = bytes(actual)
        if self.actual[:1] != self.expected[:1]:
            message = (
                f"got MID=0x{self.actual[0]:02X} "
                f"expected MID=0x{self.expected[0]:02X}"
            )
        else:
            message = (
                f"got DID=0x{self.actual[1]:02X},0x{self.actual[2]:02X} "
                f"expected 0x{self.expected[1]:02X},0x{self.expected[2]:02X}"
            )
        super().__init__(message)


class ProtocolError(CommsError):
    """
    Command protocol error.

    Raised when a command cannot be expressed in the bootloader's
    request/response framing.
    """
    pass


class ProtocolLimitExceeded(ProtocolError):
    """
    Payload or expected reply is larger than the protocol allows.

    This is a programming error in the caller and is never retried.
    """

    def __init__(self, payload_length: int, reply_length: int, limit: int):
        self.payload_length = payload_length
        self.reply_length = reply_length
        self.limit = limit
        super().__init__(
            f"protocol limited to {limit} byte payloads "
            f"(payload={payload_length}, reply={reply_length})"
        )


class TransportError(CommsError):
    """Base exception for byte channel I/O failures."""
    pass


class TransportReadFailed(TransportError):
    """
    Response could not be read in full.

    Attributes:
        received: Number of bytes received before the failure
        expected: Number of bytes the command should have returned
    """

    def __init__(self, received: int, expected: int, reason: str = ""):
        self.received = received
        self.expected = expected
        message = f"failed to read reply [just {received} of {expected} bytes]"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class TransportWriteFailed(TransportError):
    """
    Command bytes could not be written to the channel.

    Attributes:
        written: Number of bytes accepted by the channel (if known)
        expected: Number of bytes in the framed command
    """

    def __init__(self, written: Optional[int], expected: int, reason: str = ""):
        self.written = written
        self.expected = expected
        if written is None:
            message = f"failed to write {expected} byte command"
        else:
            message = f"failed to write enough [{written} != {expected}]"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class TimeoutError(CommsError):
    """
    Status register never reached the desired value in time.

    Note:
        This is a qflash-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling in the comms layer.
    """

    def __init__(self, mask: int, desired: int, last_status: Optional[int], timeout: float):
        self.mask = mask
        self.desired = desired
        self.last_status = last_status
        self.timeout = timeout
        status = "none" if last_status is None else f"0x{last_status:02X}"
        super().__init__(
            f"timed out after {timeout:.3f}s waiting for "
            f"status & 0x{mask:02X} == 0x{desired:02X} (last status {status})"
        )


# =============================================================================
# Flash Exceptions
# =============================================================================

class FlashError(QFlashError):
    """Base exception for flash memory operation errors."""
    pass


class AddressError(FlashError):
    """Base exception for invalid flash addresses."""
    pass


class UnalignedAddress(AddressError):
    """
    Write address is not on a sector boundary.

    Raised before any device I/O, so flash content is untouched.
    """

    def __init__(self, address: int, alignment: int):
        self.address = address
        self.alignment = alignment
        super().__init__(
            f"address is not sector aligned: 0x{address:06x} & "
            f"0x{alignment - 1:x} != 0"
        )


class OutOfRange(AddressError):
    """
    Access falls outside the permitted address range.

    Attributes:
        address: First address of the request
        length: Number of bytes requested
        start: Lowest permitted address
        limit: One more than the highest permitted address
    """

    def __init__(self, address: int, length: int, start: int, limit: int, what: str = "data"):
        self.address = address
        self.length = length
        self.start = start
        self.limit = limit
        super().__init__(
            f"{what} request [0x{address:x},0x{address + length:x}) "
            f"outside [0x{start:x},0x{limit:x})"
        )


class FlashWriteError(FlashError):
    """
    A write stopped part way through.

    Writes run strictly in increasing address order, so everything in
    [start, completed) was programmed and verified complete by the
    device, while flash from `completed` onwards is untouched or
    erased-but-unprogrammed.

    Attributes:
        address: Address of the erase/program step that failed
        completed: First address that was not successfully programmed
    """

    step = "write"

    def __init__(self, address: int, completed: int, reason: str = ""):
        self.address = address
        self.completed = completed
        message = f"{self.step} failed at address=0x{address:06x}"
        if reason:
            message += f": {reason}"
        message += f" (programmed up to 0x{completed:06x})"
        super().__init__(message)


class EraseFailed(FlashWriteError):
    """
    Sector erase step failed.

    The content of the sector at `address` is undefined afterwards:
    the device may have erased part or all of it before the failure.
    """

    step = "sector erase"


class ProgramFailed(FlashWriteError):
    """Page program step failed."""

    step = "page program"


class Protected(FlashError):
    """
    Operation targets an address below the protection boundary.

    Attributes:
        address: Address the operation would start at
        boundary: The protection boundary in force
    """

    def __init__(self, address: int, boundary: int):
        self.address = address
        self.boundary = boundary
        super().__init__(
            f"write protection up to 0x{boundary:06x}, but address=0x{address:06x}"
        )


class UnknownRegion(FlashError):
    """No region has the requested name."""

    def __init__(self, name: str, known: Optional[list[str]] = None):
        self.name = name
        self.known = known or []
        message = f"no section named {name!r}"
        if self.known:
            message += f" (known: {', '.join(self.known)})"
        message += ": try 'qflash layout'"
        super().__init__(message)


class MalformedMetadata(FlashError):
    """Metadata record is shorter than the fixed encoded size."""

    def __init__(self, length: int, expected: int):
        self.length = length
        self.expected = expected
        super().__init__(
            f"metadata record needs {expected} bytes, got {length}"
        )


class IntegrityError(FlashError):
    """Base exception for region integrity check failures."""
    pass


class InvalidDeclaredSize(IntegrityError):
    """Metadata declares more bytes than the region can hold."""

    def __init__(self, region: str, size: int, maximum: int):
        self.region = region
        self.size = size
        self.maximum = maximum
        super().__init__(
            f"meta for {region!r} has invalid size {size} > {maximum}"
        )


class ChecksumMismatch(IntegrityError):
    """
    CRC recomputed over the region data differs from the stored CRC.

    Attributes:
        region: Region name
        got: CRC computed from device contents
        want: CRC stored in the metadata record
    """

    def __init__(self, region: str, got: int, want: int):
        self.region = region
        self.got = got
        self.want = want
        super().__init__(
            f"crc mismatch for {region!r}: got=0x{got:08x} want=0x{want:08x}"
        )
