"""
CRC-32 Implementation for Flash Region Metadata
===============================================

This module implements the CRC-32 variant stored in each region's metadata
record. The bootloader recomputes it before loading a region, so the value
written by qflash must match bit for bit.

Technical Details
-----------------
- Polynomial: 0x04C11DB7 (x^32 + x^26 + x^23 + ... + x + 1)
- Initial value: 0xFFFFFFFF
- Input/output reflection: none (MSB-first)
- Final XOR: none

This is the checksum used by the gdb remote protocol ("qCRC" packet),
which originates in libiberty's xcrc32(). It is also known as
CRC-32/MPEG-2. Because there is no final XOR, the CRC of a concatenation
can be computed incrementally by passing the previous result as the
initial value:

    crc32(a + b) == crc32(b, initial=crc32(a))

Known Values
------------
    crc32(b"")          = 0xFFFFFFFF
    crc32(b"123456789") = 0x0376E6E7

Usage
-----
    from qflash.comms.crc import crc32

    checksum = crc32(image)
    assert verify_crc(image, checksum)
"""

from typing import Final, Iterable

# =============================================================================
# CRC-32 Constants
# =============================================================================

CRC_POLYNOMIAL: Final[int] = 0x04C11DB7

CRC_INITIAL: Final[int] = 0xFFFFFFFF

CRC_MASK: Final[int] = 0xFFFFFFFF

# Standard check value for the ASCII string "123456789"
CRC_CHECK_VALUE: Final[int] = 0x0376E6E7


# =============================================================================
# Lookup Table Generation
# =============================================================================

def _generate_crc_table() -> tuple[int, ...]:
    """
    Generate the 256-entry MSB-first lookup table.

    Entry i is the CRC register after shifting the byte i (placed in the
    top 8 bits) through 8 rounds of polynomial division.
    """
    table = []
    for byte_val in range(256):
        crc = byte_val << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ CRC_POLYNOMIAL) & CRC_MASK
            else:
                crc = (crc << 1) & CRC_MASK
        table.append(crc)
    return tuple(table)


# Pre-computed lookup table - generated once at import time
CRC_TABLE: Final[tuple[int, ...]] = _generate_crc_table()


# =============================================================================
# CRC Calculation
# =============================================================================

def crc32(data: Iterable[int], initial: int = CRC_INITIAL) -> int:
    """
    Calculate the xcrc32 checksum of data.

    Args:
        data: Input bytes.
        initial: Starting register value. Pass a previous result to
                 continue a checksum over data processed in pieces.

    Returns:
        32-bit CRC value.

    Example:
        >>> hex(crc32(b"123456789"))
        '0x376e6e7'
    """
    crc = initial & CRC_MASK
    table = CRC_TABLE
    for byte in data:
        crc = ((crc << 8) & CRC_MASK) ^ table[((crc >> 24) ^ byte) & 0xFF]
    return crc


def crc32_bitwise(data: Iterable[int], initial: int = CRC_INITIAL) -> int:
    """
    Bit-by-bit reference implementation of crc32().

    Much slower than the table version; kept to cross-check the table.
    """
    crc = initial & CRC_MASK
    for byte in data:
        crc ^= (byte & 0xFF) << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ CRC_POLYNOMIAL) & CRC_MASK
            else:
                crc = (crc << 1) & CRC_MASK
    return crc


def verify_crc(data: bytes, expected: int) -> bool:
    """Return True if crc32(data) equals expected."""
    return crc32(data) == (expected & CRC_MASK)
