"""
qflash Flash Module
===================

Flash programming engine for the board's 2 MiB SPI flash.

Module Structure
----------------
- **device**: FlashDevice session (identify, wait, read, write)
- **regions**: the static region table and metadata tag values
- **metadata**: 12-byte region metadata record codec
- **programmer**: region-level read/write/disable operations
- **integrity**: CRC validation of a region against its metadata
- **protection**: write protection boundary policy

Quick Start
-----------
    from qflash.config import FlashConfig
    from qflash.flash import open_device, lookup_region, write_region, validate_region

    config = FlashConfig(port="/dev/ttyACM0")
    with open_device(config) as device:
        write_region(device, lookup_region("app"), image, protect=config.protect)
        validate_region(device, "app")
"""

from qflash.flash.regions import (
    PAGE_CHUNK,
    REGIONS,
    ROM_SIZE,
    SECTOR_SIZE,
    ImageType,
    Presence,
    Purpose,
    Region,
    lookup_region,
    region_names,
)

from qflash.flash.metadata import (
    METADATA_SIZE,
    MetadataRecord,
    decode_metadata,
    encode_metadata,
)

from qflash.flash.protection import (
    DEFAULT_PROTECT_BOUNDARY,
    check_writable,
    is_writable,
)

from qflash.flash.device import (
    POLL_INTERVAL,
    STATUS_WIP,
    SUPPORTED_JEDEC_ID,
    FlashDevice,
    ReadProgress,
    WriteProgress,
    WriteStep,
    open_device,
    pad_to_sector,
)

from qflash.flash.programmer import (
    describe_layout,
    disable_region,
    read_metadata,
    read_range,
    read_region,
    write_metadata,
    write_range,
    write_region,
)

from qflash.flash.integrity import validate_region

__all__ = [
    # Regions
    "PAGE_CHUNK",
    "REGIONS",
    "ROM_SIZE",
    "SECTOR_SIZE",
    "ImageType",
    "Presence",
    "Purpose",
    "Region",
    "lookup_region",
    "region_names",
    # Metadata
    "METADATA_SIZE",
    "MetadataRecord",
    "decode_metadata",
    "encode_metadata",
    # Protection
    "DEFAULT_PROTECT_BOUNDARY",
    "check_writable",
    "is_writable",
    # Device
    "POLL_INTERVAL",
    "STATUS_WIP",
    "SUPPORTED_JEDEC_ID",
    "FlashDevice",
    "ReadProgress",
    "WriteProgress",
    "WriteStep",
    "open_device",
    "pad_to_sector",
    # Operations
    "describe_layout",
    "disable_region",
    "read_metadata",
    "read_range",
    "read_region",
    "write_metadata",
    "write_range",
    "write_region",
    "validate_region",
]
