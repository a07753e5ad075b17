"""
Tests for the Communication Module
==================================

This module tests the qflash communication components:
- xcrc32 implementation
- Command framing (header layout, size limits)
- Reply accumulation and transport failures
- Serial port utilities

Test Categories
---------------
1. CRC Tests: Verify the CRC algorithm against known values
2. Framing Tests: Verify the exact bytes sent for a command
3. Framer Tests: Verify reply handling against a mocked channel
4. Serial Tests: Port info, formatting and error mapping (mocked)

Note: Hardware-dependent tests are skipped by default.
"""

import logging

import pytest
import serial
from unittest.mock import Mock, patch

from qflash.comms.crc import (
    CRC_CHECK_VALUE,
    CRC_INITIAL,
    CRC_TABLE,
    crc32,
    crc32_bitwise,
    verify_crc,
)
from qflash.comms.framer import (
    COMMAND_TAG,
    HEADER_SIZE,
    MAX_TRANSFER_SIZE,
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
from qflash.errors import (
    CommsError,
    ConnectionError,
    ProtocolLimitExceeded,
    TransportReadFailed,
    TransportWriteFailed,
)


# =============================================================================
# CRC Tests
# =============================================================================

class TestCRC32:
    """Tests for the xcrc32 (CRC-32/MPEG-2) implementation."""

    def test_check_value(self):
        """The standard check string gives the catalogued value."""
        assert crc32(b"123456789") == 0x0376E6E7
        assert CRC_CHECK_VALUE == 0x0376E6E7

    def test_empty_input_is_initial_value(self):
        """No final XOR: the CRC of nothing is the initial register."""
        assert crc32(b"") == CRC_INITIAL == 0xFFFFFFFF

    def test_table_size(self):
        assert len(CRC_TABLE) == 256
        assert CRC_TABLE[0] == 0
        assert CRC_TABLE[1] == 0x04C11DB7

    def test_bitwise_and_table_match(self):
        """Bit-by-bit and table implementations must agree."""
        for byte_val in range(256):
            data = bytes([byte_val])
            assert crc32(data) == crc32_bitwise(data), f"mismatch for {byte_val:02X}"

        data = bytes(range(256)) * 4
        assert crc32(data) == crc32_bitwise(data)

    def test_continuation(self):
        """A CRC can be continued over data processed in pieces."""
        first, second = b"QuickFeather ", b"application image"
        assert crc32(first + second) == crc32(second, initial=crc32(first))

    def test_sensitive_to_single_bit(self):
        data = bytearray(b"\x00" * 64)
        original = crc32(data)
        data[17] ^= 0x10
        assert crc32(data) != original

    def test_result_is_32_bit(self):
        for data in (b"\xff" * 100, b"\x00" * 100, bytes(range(256))):
            assert 0 <= crc32(data) <= 0xFFFFFFFF

    def test_verify_crc(self):
        assert verify_crc(b"123456789", 0x0376E6E7)
        assert not verify_crc(b"123456780", 0x0376E6E7)


# =============================================================================
# Framing Tests
# =============================================================================

class TestBuildCommand:
    """Tests for the 5-byte command header."""

    def test_header_layout(self):
        """Tag, payload length LE, reply length LE, then payload."""
        frame = build_command(b"\x9f", 3)
        assert frame == bytes([0x01, 0x01, 0x00, 0x03, 0x00, 0x9F])

    def test_header_size(self):
        frame = build_command(b"\x06", 0)
        assert len(frame) == HEADER_SIZE + 1
        assert frame[0] == COMMAND_TAG

    def test_fast_read_command(self):
        payload = bytes([0x0B, 0x08, 0x00, 0x10, 0x00])
        frame = build_command(payload, 16)
        assert frame[:5] == bytes([0x01, 0x05, 0x00, 0x10, 0x00])
        assert frame[5:] == payload

    def test_maximum_lengths_accepted(self):
        frame = build_command(b"\x02" * MAX_TRANSFER_SIZE, MAX_TRANSFER_SIZE)
        assert len(frame) == HEADER_SIZE + MAX_TRANSFER_SIZE

    def test_payload_too_long(self):
        with pytest.raises(ProtocolLimitExceeded) as exc_info:
            build_command(b"\x00" * 17, 0)
        assert exc_info.value.payload_length == 17
        assert exc_info.value.limit == 16

    def test_reply_too_long(self):
        with pytest.raises(ProtocolLimitExceeded) as exc_info:
            build_command(b"\x0b", 17)
        assert exc_info.value.reply_length == 17


# =============================================================================
# Command Framer Tests
# =============================================================================

class TestCommandFramer:
    """Tests for CommandFramer with a mocked channel."""

    def _channel(self, replies=(), written=None):
        channel = Mock()
        channel.read.side_effect = list(replies)
        channel.write.side_effect = lambda data: len(data) if written is None else written
        return channel

    def test_single_write_per_command(self):
        channel = self._channel()
        framer = CommandFramer(channel)

        assert framer.send_command(b"\x06", 0) == b""

        channel.write.assert_called_once_with(bytes([0x01, 0x01, 0x00, 0x00, 0x00, 0x06]))
        channel.read.assert_not_called()

    def test_reply_accumulated_from_partial_reads(self):
        channel = self._channel([b"\xc8", b"\x40\x15"])
        framer = CommandFramer(channel)

        assert framer.send_command(b"\x9f", 3) == b"\xc8\x40\x15"
        assert channel.read.call_count == 2
        # Second read asks only for what is still missing
        assert channel.read.call_args_list[1].args == (2,)

    def test_write_returning_none_accepted(self):
        channel = Mock()
        channel.write.return_value = None
        channel.read.return_value = b"\x00"
        assert CommandFramer(channel).send_command(b"\x05", 1) == b"\x00"

    def test_limit_checked_before_sending(self):
        channel = self._channel()
        with pytest.raises(ProtocolLimitExceeded):
            CommandFramer(channel).send_command(b"\x02" * 20, 0)
        channel.write.assert_not_called()

    def test_short_write(self):
        channel = self._channel(written=3)
        with pytest.raises(TransportWriteFailed) as exc_info:
            CommandFramer(channel).send_command(b"\x06", 0)
        assert exc_info.value.written == 3
        assert exc_info.value.expected == 6

    def test_write_error(self):
        channel = Mock()
        channel.write.side_effect = serial.SerialException("device disconnected")
        with pytest.raises(TransportWriteFailed) as exc_info:
            CommandFramer(channel).send_command(b"\x06", 0)
        assert exc_info.value.written is None
        assert isinstance(exc_info.value.__cause__, serial.SerialException)

    def test_read_timeout(self):
        """An empty read means the port timed out; the count so far is kept."""
        channel = self._channel([b"\xc8", b""])
        with pytest.raises(TransportReadFailed) as exc_info:
            CommandFramer(channel).send_command(b"\x9f", 3)
        assert exc_info.value.received == 1
        assert exc_info.value.expected == 3
        assert "just 1 of 3" in str(exc_info.value)

    def test_read_error(self):
        channel = Mock()
        channel.write.return_value = 6
        channel.read.side_effect = OSError("I/O error")
        with pytest.raises(TransportReadFailed) as exc_info:
            CommandFramer(channel).send_command(b"\x05", 1)
        assert exc_info.value.received == 0

    def test_transport_errors_are_comms_errors(self):
        assert issubclass(TransportReadFailed, CommsError)
        assert issubclass(TransportWriteFailed, CommsError)
        assert issubclass(ProtocolLimitExceeded, CommsError)


# =============================================================================
# Serial Port Tests
# =============================================================================

class TestSerialPort:
    """Tests for serial port utilities."""

    def test_default_baud_rate(self):
        assert DEFAULT_BAUD_RATE == 115200
        assert DEFAULT_BAUD_RATE in VALID_BAUD_RATES

    def test_port_info_usb(self):
        info = PortInfo(
            device="/dev/ttyACM0",
            description="TinyFPGA bootloader",
            manufacturer=None,
            product=None,
            serial_number=None,
            vid=0x1D50,
            pid=0x6140,
        )
        assert info.is_usb
        assert info.is_board
        assert str(info) == "/dev/ttyACM0 - TinyFPGA bootloader [board]"

    def test_port_info_other_usb(self):
        info = PortInfo("/dev/ttyUSB0", "FT232R", "FTDI", None, None, 0x0403, 0x6001)
        assert info.is_usb
        assert not info.is_board
        assert "[board]" not in str(info)

    def test_port_info_non_usb(self):
        info = PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None, None)
        assert not info.is_usb
        assert not info.is_board

    def test_format_port_list_empty(self):
        assert "No serial ports" in format_port_list([])

    def test_format_port_list_detailed(self):
        ports = [
            PortInfo("/dev/ttyACM0", "CDC", "OpenMoko", None, "123", 0x1D50, 0x6140),
            PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None, None),
        ]
        result = format_port_list(ports, verbose=True)
        assert "/dev/ttyACM0" in result
        assert "1D50:6140" in result
        assert "Serial: 123" in result
        assert "/dev/ttyS0" in result

    def test_list_serial_ports(self):
        raw = Mock(
            device="/dev/ttyACM0", description="CDC", manufacturer=None,
            product=None, serial_number=None, vid=0x1D50, pid=0x6140,
        )
        with patch("serial.tools.list_ports.comports", return_value=[raw]):
            ports = list_serial_ports()
        assert ports == [
            PortInfo("/dev/ttyACM0", "CDC", None, None, None, 0x1D50, 0x6140)
        ]
        assert ports[0].is_board

    def test_open_invalid_baud_rate(self):
        with pytest.raises(ValueError, match="Invalid baud rate"):
            open_serial_port("/dev/ttyACM0", baud_rate=1234)

    def test_open_configures_8n1(self):
        with patch("qflash.comms.serial.serial.Serial") as serial_cls:
            port = open_serial_port("/dev/ttyACM0", timeout=0.5)

        kwargs = serial_cls.call_args.kwargs
        assert kwargs["port"] == "/dev/ttyACM0"
        assert kwargs["baudrate"] == 115200
        assert kwargs["bytesize"] == serial.EIGHTBITS
        assert kwargs["parity"] == serial.PARITY_NONE
        assert kwargs["stopbits"] == serial.STOPBITS_ONE
        assert kwargs["timeout"] == 0.5
        assert kwargs["rtscts"] is False
        port.reset_input_buffer.assert_called_once()

    @pytest.mark.parametrize("message,expected", [
        ("[Errno 2] could not open port: No such file or directory", "not found"),
        ("[Errno 13] Permission denied: '/dev/ttyACM0'", "dialout"),
        ("[Errno 16] Device or resource busy", "busy"),
        ("something else", "unable to open"),
    ])
    def test_open_errors_mapped(self, message, expected):
        with patch(
            "qflash.comms.serial.serial.Serial",
            side_effect=serial.SerialException(message),
        ):
            with pytest.raises(ConnectionError, match=expected) as exc_info:
                open_serial_port("/dev/ttyACM0")
        assert isinstance(exc_info.value.__cause__, serial.SerialException)

    def test_close_none(self):
        close_serial_port(None)

    def test_close_open_port(self):
        port = Mock(is_open=True)
        close_serial_port(port)
        port.close.assert_called_once()

    def test_close_already_closed(self):
        port = Mock(is_open=False)
        close_serial_port(port)
        port.close.assert_not_called()

    def test_close_error_logged(self, caplog):
        port = Mock(is_open=True)
        port.close.side_effect = OSError("gone")
        with caplog.at_level(logging.WARNING, logger="qflash.comms.serial"):
            close_serial_port(port)
        assert "gone" in caplog.text


# =============================================================================
# Test Markers and Configuration
# =============================================================================

# Mark tests that require real hardware
hardware_marker = pytest.mark.skipif(
    True,  # Always skip by default
    reason="Hardware tests require a board in programming mode"
)


@hardware_marker
class TestHardware:
    """Tests that require a real board."""

    def test_real_connection(self):
        from qflash.config import get_default_config
        from qflash.flash import open_device

        with open_device(get_default_config()) as device:
            assert device.identified
