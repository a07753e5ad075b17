"""
Bootloader Command Framer
=========================

This module implements the request/response framing spoken by the board's
bootloader when it exposes the SPI flash over USB serial (the TinyFPGA
bootloader "SPI passthrough" protocol).

Wire Format
-----------
Every command is a 5-byte header followed by the raw SPI bytes to clock
out to the flash chip:

    ┌──────┬─────────────┬─────────────┬──────────────────┐
    │ Tag  │ Payload len │ Reply len   │ Payload          │
    │ 0x01 │ u16 LE      │ u16 LE      │ 0-16 bytes       │
    └──────┴─────────────┴─────────────┴──────────────────┘

The bootloader asserts chip select, clocks out the payload, clocks in
"reply len" bytes, deasserts chip select, and sends those bytes back with
no framing at all. A zero reply length means the command returns nothing.

Both lengths are limited to 16 bytes by the bootloader's buffers.

The channel is strictly synchronous: a command must never be sent before
the previous reply has been consumed completely. There are no retries at
this layer.
"""

import logging
from typing import Final, Protocol

from qflash.errors import (
    ProtocolLimitExceeded,
    TransportReadFailed,
    TransportWriteFailed,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

# First byte of every command
COMMAND_TAG: Final[int] = 0x01

# Header: tag(1) + payload length(2) + reply length(2)
HEADER_SIZE: Final[int] = 5

# Maximum payload and reply size in a single command
MAX_TRANSFER_SIZE: Final[int] = 16


class ByteChannel(Protocol):
    """
    The minimal duplex byte stream the framer needs.

    serial.Serial satisfies this, as does qflash.testkit.SimulatedFlash.
    read() may return fewer bytes than requested; an empty result means
    the channel's read timeout expired. A close() method is optional and
    is only used by whoever owns the channel.
    """

    def read(self, size: int = 1) -> bytes: ...

    def write(self, data: bytes) -> int | None: ...


def build_command(payload: bytes, reply_length: int) -> bytes:
    """
    Frame a command for transmission.

    Args:
        payload: Raw SPI bytes (opcode, address, data).
        reply_length: Number of bytes to clock back from the chip.

    Returns:
        Header followed by payload.

    Raises:
        ProtocolLimitExceeded: If either length exceeds 16 bytes.
    """
    if len(payload) > MAX_TRANSFER_SIZE or reply_length > MAX_TRANSFER_SIZE or reply_length < 0:
        raise ProtocolLimitExceeded(len(payload), reply_length, MAX_TRANSFER_SIZE)

    send = len(payload)
    header = bytes([
        COMMAND_TAG,
        send & 0xFF,
        (send >> 8) & 0xFF,
        reply_length & 0xFF,
        (reply_length >> 8) & 0xFF,
    ])
    return header + bytes(payload)


class CommandFramer:
    """
    Sends framed commands and collects their fixed-length replies.

    Usage:
        port = open_serial_port('/dev/ttyACM0')
        framer = CommandFramer(port)

        jedec = framer.send_command(b"\\x9f", 3)
    """

    def __init__(self, channel: ByteChannel):
        """
        Initialize the framer.

        Args:
            channel: Open byte channel. The framer does not own it and
                     never closes it.
        """
        self.channel = channel

    def send_command(self, payload: bytes, reply_length: int = 0) -> bytes:
        """
        Send one command and return its reply.

        Args:
            payload: Raw SPI bytes, at most 16.
            reply_length: Exact number of reply bytes, at most 16.

        Returns:
            Exactly reply_length bytes.

        Raises:
            ProtocolLimitExceeded: Lengths too large (nothing was sent).
            TransportWriteFailed: The command could not be written.
            TransportReadFailed: The reply could not be read in full.
        """
        frame = build_command(payload, reply_length)

        try:
            written = self.channel.write(frame)
        except OSError as e:
            raise TransportWriteFailed(None, len(frame), str(e)) from e
        # pyserial returns None from write() on some platforms
        if written is not None and written != len(frame):
            raise TransportWriteFailed(written, len(frame))

        logger.debug("TX: %s (expect %d)", bytes(payload).hex(), reply_length)

        reply = bytearray()
        while len(reply) < reply_length:
            try:
                chunk = self.channel.read(reply_length - len(reply))
            except OSError as e:
                raise TransportReadFailed(len(reply), reply_length, str(e)) from e
            if not chunk:
                raise TransportReadFailed(
                    len(reply), reply_length, "no data before read timeout"
                )
            reply.extend(chunk)

        if reply_length:
            logger.debug("RX: %s", reply.hex())
        return bytes(reply)
