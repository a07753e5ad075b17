"""
Region Integrity Check
======================

Recomputes the xcrc32 of a region's image exactly as the bootloader does
at boot, and compares it with the CRC stored in the region's metadata.
"""

import logging
from typing import Optional

from qflash.comms.crc import crc32
from qflash.errors import ChecksumMismatch, InvalidDeclaredSize
from qflash.flash.device import FlashDevice, ReadProgress
from qflash.flash.metadata import MetadataRecord
from qflash.flash.programmer import read_metadata
from qflash.flash.regions import lookup_region

logger = logging.getLogger(__name__)


def validate_region(
    device: FlashDevice,
    name: str,
    progress: Optional[ReadProgress] = None,
) -> MetadataRecord:
    """
    Check that a region's contents match its metadata CRC.

    Args:
        device: Connected flash session.
        name: Region name.
        progress: Optional read progress callback.

    Returns:
        The region's metadata record, when the check passes.

    Raises:
        UnknownRegion: If there is no such region.
        InvalidDeclaredSize: If the metadata size exceeds the region
                             (the data area is not read).
        ChecksumMismatch: If the recomputed CRC differs.
    """
    region = lookup_region(name)
    meta = read_metadata(device, region)

    if meta.size > region.size:
        raise InvalidDeclaredSize(region.name, meta.size, region.size)

    data = device.read(region.base, meta.size, progress)
    got = crc32(data)
    if got != meta.crc:
        raise ChecksumMismatch(region.name, got, meta.crc)

    logger.debug("%r OK: %d bytes, crc=0x%08X", region.name, meta.size, got)
    return meta
