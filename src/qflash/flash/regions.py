"""
Flash Region Catalog
====================

The 2 MiB SPI flash is divided into fixed regions, each holding one
image. Every region has a 12-byte metadata record at its own offset
(see qflash.flash.metadata) which the bootloader reads to decide whether
the region holds a valid image.

    region      [   base,  limit)  meta     image  purpose
    ----------  -----------------  -------  -----  -------
    bootloader  [0x00000,0x10000)  0x1f000  m4     boot
    bootfpga    [0x20000,0x40000)  0x10000  fpga   boot
    appfpga     [0x40000,0x60000)  0x11000  fpga   app
    appffe      [0x60000,0x80000)  0x12000  ffe    app
    app         [0x80000,0xee000)  0x13000  m4     app

The table is compiled in and read-only.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from qflash.errors import UnknownRegion


# =============================================================================
# Device Geometry
# =============================================================================

ROM_SIZE: Final[int] = 2 * 1024 * 1024

# Minimum erasable unit
SECTOR_SIZE: Final[int] = 4096

# Bytes programmed per page-program command
PAGE_CHUNK: Final[int] = 8


# =============================================================================
# Metadata Tag Values
# =============================================================================

class Presence(IntEnum):
    """Presence flag of a metadata record."""

    WRITTEN = 0x03
    EMPTY = 0xFF

    @classmethod
    def describe(cls, value: int) -> str:
        """Name for a raw presence byte, '<invalid>' if unrecognized."""
        names = {cls.WRITTEN: "written", cls.EMPTY: "empty"}
        return names.get(value, "<invalid>")


class ImageType(IntEnum):
    """Encoding of the image stored in a region."""

    M4 = 1
    FFE = 2
    FPGA = 3
    FS = 4

    @classmethod
    def describe(cls, value: int) -> str:
        """Name for a raw image type byte, '<invalid>' if unrecognized."""
        names = {cls.M4: "m4", cls.FFE: "ffe", cls.FPGA: "fpga", cls.FS: "fs"}
        return names.get(value, "<invalid>")


class Purpose(IntEnum):
    """Role of the image stored in a region."""

    BOOT = 0x01
    APP = 0x02
    OTA = 0x03
    FS_FAT = 0x20

    @classmethod
    def describe(cls, value: int) -> str:
        """Name for a raw purpose byte, '<invalid>' if unrecognized."""
        names = {
            cls.BOOT: "boot",
            cls.APP: "app",
            cls.OTA: "ota",
            cls.FS_FAT: "fs-FAT",
        }
        return names.get(value, "<invalid>")


# =============================================================================
# Region Table
# =============================================================================

@dataclass(frozen=True)
class Region:
    """
    A named range of flash dedicated to one image.

    Attributes:
        name: Unique region name used on the command line
        base: First address of the region
        limit: One more than the last address of the region
        meta: Address of the region's metadata record
        image: Image type written into the metadata
        purpose: Purpose written into the metadata
    """

    name: str
    base: int
    limit: int
    meta: int
    image: ImageType
    purpose: Purpose

    def __post_init__(self) -> None:
        if not 0 <= self.base < self.limit <= ROM_SIZE:
            raise ValueError(
                f"region {self.name!r}: require 0 <= base < limit <= 0x{ROM_SIZE:x}, "
                f"got [0x{self.base:x},0x{self.limit:x})"
            )

    @property
    def size(self) -> int:
        """Capacity of the region in bytes."""
        return self.limit - self.base

    def contains(self, address: int) -> bool:
        return self.base <= address < self.limit


REGIONS: Final[tuple[Region, ...]] = (
    Region("bootloader", 0x00000, 0x10000, 0x1F000, ImageType.M4, Purpose.BOOT),
    Region("bootfpga", 0x20000, 0x40000, 0x10000, ImageType.FPGA, Purpose.BOOT),
    Region("appfpga", 0x40000, 0x60000, 0x11000, ImageType.FPGA, Purpose.APP),
    Region("appffe", 0x60000, 0x80000, 0x12000, ImageType.FFE, Purpose.APP),
    Region("app", 0x80000, 0xEE000, 0x13000, ImageType.M4, Purpose.APP),
)

_REGIONS_BY_NAME: Final[dict[str, Region]] = {r.name: r for r in REGIONS}


def region_names() -> list[str]:
    """Names of all regions in address order."""
    return [r.name for r in REGIONS]


def lookup_region(name: str) -> Region:
    """
    Return the region with the given name.

    Raises:
        UnknownRegion: If no region has that name.
    """
    try:
        return _REGIONS_BY_NAME[name]
    except KeyError:
        raise UnknownRegion(name, region_names()) from None
