"""
Write Protection Policy
=======================

Flash below the protection boundary holds the bootloader and the boot
FPGA image. Damaging either usually leaves the board needing a JTAG
probe to recover, so writes and metadata clears there are refused
unless the caller lowers the boundary explicitly (--protect 0).

The policy is a pure function of two integers. It does not look at the
region table.
"""

from typing import Final

from qflash.errors import Protected

# Everything below the application FPGA region
DEFAULT_PROTECT_BOUNDARY: Final[int] = 0x40000


def is_writable(address: int, protect_boundary: int) -> bool:
    """Return True if address is at or above the boundary."""
    return address >= protect_boundary


def check_writable(address: int, protect_boundary: int) -> None:
    """
    Refuse operations that start below the protection boundary.

    Raises:
        Protected: If address < protect_boundary.
    """
    if not is_writable(address, protect_boundary):
        raise Protected(address, protect_boundary)
