"""
Region Operations
=================

Higher-level operations that combine raw flash access with the region
table and metadata records. These are what the CLI commands call.

Writing a region is a two-step process:

1. The image is written at the region base (erasing as it goes).
2. Only after the image is fully programmed, the region's metadata
   record is rewritten with presence=written, the image size, and its
   xcrc32.

If step 1 fails the old metadata is left in place, so the bootloader
will reject the region on its next CRC check rather than boot a partial
image. The metadata update in step 2 is not subject to the protection
boundary: metadata offsets sit below it, and the write itself was
already checked against the region base.
"""

import logging
from typing import Optional

from qflash.comms.crc import crc32
from qflash.errors import OutOfRange
from qflash.flash.device import FlashDevice, ReadProgress, WriteProgress
from qflash.flash.metadata import (
    METADATA_SIZE,
    MetadataRecord,
    decode_metadata,
    encode_metadata,
)
from qflash.flash.protection import check_writable
from qflash.flash.regions import REGIONS, ROM_SIZE, Region

logger = logging.getLogger(__name__)


# =============================================================================
# Metadata Access
# =============================================================================

def read_metadata(device: FlashDevice, region: Region) -> MetadataRecord:
    """Read and decode a region's metadata record from the device."""
    return decode_metadata(device.read(region.meta, METADATA_SIZE))


def write_metadata(
    device: FlashDevice,
    region: Region,
    record: MetadataRecord,
    progress: Optional[WriteProgress] = None,
) -> None:
    """
    Write a region's metadata record.

    This erases the whole sector holding the record. Protection
    checking is the caller's job.
    """
    encoded = encode_metadata(record)
    logger.debug(
        "Metadata for %r at 0x%05x: %s", region.name, region.meta, encoded.hex()
    )
    device.write(region.meta, encoded, progress)


def describe_layout(device: FlashDevice) -> list[tuple[Region, MetadataRecord]]:
    """Read the metadata of every region, in address order."""
    return [(region, read_metadata(device, region)) for region in REGIONS]


# =============================================================================
# Region Operations
# =============================================================================

def read_region(
    device: FlashDevice,
    region: Region,
    progress: Optional[ReadProgress] = None,
) -> bytes:
    """
    Read a region's image.

    Reads up to the size declared in the metadata, or the whole region
    when the declared size is larger (which includes an empty record).
    """
    meta = read_metadata(device, region)
    limit = region.limit
    if region.base + meta.size < limit:
        limit = region.base + meta.size
    return device.read(region.base, limit - region.base, progress)


def write_region(
    device: FlashDevice,
    region: Region,
    data: bytes,
    protect: int,
    progress: Optional[WriteProgress] = None,
) -> MetadataRecord:
    """
    Write an image into a region and record it in the region's metadata.

    Args:
        device: Connected flash session.
        region: Target region.
        data: Image bytes (unpadded; size and CRC cover exactly these).
        protect: Protection boundary.
        progress: Optional write progress callback.

    Returns:
        The metadata record written.

    Raises:
        Protected: If the region base is below the protection boundary.
        OutOfRange: If the image is larger than the region.
        FlashWriteError: If the image or metadata write fails.
    """
    check_writable(region.base, protect)
    if len(data) > region.size:
        raise OutOfRange(region.base, len(data), region.base, region.limit,
                         f"{region.name!r} image")

    device.write(region.base, data, progress)

    record = MetadataRecord.written(region, crc32(data), len(data))
    write_metadata(device, region, record, progress)
    logger.info(
        "Wrote %d bytes to %r (crc=0x%08X)", len(data), region.name, record.crc
    )
    return record


def disable_region(
    device: FlashDevice,
    region: Region,
    protect: int,
    progress: Optional[WriteProgress] = None,
) -> MetadataRecord:
    """
    Mark a region empty by rewriting only its metadata.

    The image bytes are left in place; the bootloader ignores them.

    Raises:
        Protected: If the region base is below the protection boundary.
    """
    check_writable(region.base, protect)
    record = MetadataRecord.empty(region)
    write_metadata(device, region, record, progress)
    logger.info("Disabled %r", region.name)
    return record


# =============================================================================
# Raw Range Operations
# =============================================================================

def _check_range(address: int, limit: int) -> None:
    # address must be below limit, and limit must not pass the chip
    if address < 0 or address >= limit or limit > ROM_SIZE:
        raise OutOfRange(address, limit - address, 0, ROM_SIZE, "range")


def read_range(
    device: FlashDevice,
    address: int,
    limit: int,
    progress: Optional[ReadProgress] = None,
) -> bytes:
    """Read [address, limit) after validating the range."""
    _check_range(address, limit)
    return device.read(address, limit - address, progress)


def write_range(
    device: FlashDevice,
    address: int,
    limit: int,
    data: bytes,
    protect: int,
    progress: Optional[WriteProgress] = None,
) -> None:
    """
    Write data at address without touching any metadata.

    Raises:
        OutOfRange: If the range is invalid or data extends past limit.
        Protected: If address is below the protection boundary.
    """
    _check_range(address, limit)
    if address + len(data) > limit:
        raise OutOfRange(address, len(data), address, limit, "data write")
    check_writable(address, protect)
    device.write(address, data, progress)
