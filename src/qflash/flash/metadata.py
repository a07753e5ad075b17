"""
Region Metadata Records
=======================

Each flash region has a fixed 12-byte descriptor that the bootloader
consults before loading the region:

    Offset  Size  Field      Notes
    ------  ----  ---------  ----------------------------------------
    0       4     crc        xcrc32 over the first `size` bytes (LE)
    4       4     size       bytes written to the region (LE)
    8       1     presence   0x03 written, 0xFF empty
    9       1     image      1 m4, 2 ffe, 3 fpga, 4 fs
    10      1     purpose    1 boot, 2 app, 3 ota, 0x20 fs-FAT
    11      1     reserved   always 0xFF

An erased record reads back as all 0xFF: presence empty, size and crc
0xFFFFFFFF. Unrecognized tag bytes are kept as-is rather than rejected,
so a record written by newer firmware still decodes.
"""

import struct
from dataclasses import dataclass
from typing import Final

from qflash.errors import MalformedMetadata
from qflash.flash.regions import ImageType, Presence, Purpose, Region

# Little-endian: u32 crc, u32 size, u8 presence, u8 image, u8 purpose, u8 reserved
METADATA_FORMAT: Final[str] = "<IIBBBB"

METADATA_SIZE: Final[int] = struct.calcsize(METADATA_FORMAT)

RESERVED_BYTE: Final[int] = 0xFF

# size/crc value of an empty record
ALL_ONES: Final[int] = 0xFFFFFFFF


@dataclass(frozen=True)
class MetadataRecord:
    """
    Decoded metadata record.

    Tag fields are plain integers so that unknown values round-trip;
    use the *_name properties for display.
    """

    crc: int
    size: int
    presence: int
    image: int
    purpose: int
    reserved: int = RESERVED_BYTE

    @classmethod
    def written(cls, region: Region, crc: int, size: int) -> "MetadataRecord":
        """Record describing `size` valid bytes in region."""
        return cls(
            crc=crc,
            size=size,
            presence=Presence.WRITTEN,
            image=region.image,
            purpose=region.purpose,
        )

    @classmethod
    def empty(cls, region: Region) -> "MetadataRecord":
        """Record marking region as holding no valid data."""
        return cls(
            crc=ALL_ONES,
            size=ALL_ONES,
            presence=Presence.EMPTY,
            image=region.image,
            purpose=region.purpose,
        )

    @property
    def is_written(self) -> bool:
        return self.presence == Presence.WRITTEN

    @property
    def is_empty(self) -> bool:
        return self.presence == Presence.EMPTY

    @property
    def presence_name(self) -> str:
        return Presence.describe(self.presence)

    @property
    def image_name(self) -> str:
        return ImageType.describe(self.image)

    @property
    def purpose_name(self) -> str:
        return Purpose.describe(self.purpose)


def decode_metadata(data: bytes) -> MetadataRecord:
    """
    Decode a metadata record.

    Args:
        data: At least 12 bytes; anything after the first 12 is ignored.

    Raises:
        MalformedMetadata: If fewer than 12 bytes are supplied.
    """
    if len(data) < METADATA_SIZE:
        raise MalformedMetadata(len(data), METADATA_SIZE)
    crc, size, presence, image, purpose, reserved = struct.unpack_from(
        METADATA_FORMAT, data
    )
    return MetadataRecord(crc, size, presence, image, purpose, reserved)


def encode_metadata(record: MetadataRecord) -> bytes:
    """Encode a record into exactly 12 bytes."""
    return struct.pack(
        METADATA_FORMAT,
        record.crc,
        record.size,
        record.presence,
        record.image,
        record.purpose,
        record.reserved,
    )
