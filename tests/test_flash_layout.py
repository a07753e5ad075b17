"""
Tests for the Region Table, Metadata Codec and Protection Policy
================================================================
"""

import itertools
import struct

import pytest

from qflash.errors import MalformedMetadata, Protected, UnknownRegion
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
from qflash.flash.regions import (
    REGIONS,
    ROM_SIZE,
    ImageType,
    Presence,
    Purpose,
    Region,
    lookup_region,
    region_names,
)


# =============================================================================
# Region Table Tests
# =============================================================================

class TestRegions:
    """Tests for the static region table."""

    def test_names(self):
        assert region_names() == ["bootloader", "bootfpga", "appfpga", "appffe", "app"]

    def test_app_region(self):
        app = lookup_region("app")
        assert (app.base, app.limit, app.meta) == (0x80000, 0xEE000, 0x13000)
        assert app.image == ImageType.M4
        assert app.purpose == Purpose.APP
        assert app.size == 0x6E000

    @pytest.mark.parametrize("name,base,limit,meta,image,purpose", [
        ("bootloader", 0x00000, 0x10000, 0x1F000, ImageType.M4, Purpose.BOOT),
        ("bootfpga", 0x20000, 0x40000, 0x10000, ImageType.FPGA, Purpose.BOOT),
        ("appfpga", 0x40000, 0x60000, 0x11000, ImageType.FPGA, Purpose.APP),
        ("appffe", 0x60000, 0x80000, 0x12000, ImageType.FFE, Purpose.APP),
    ])
    def test_memory_map(self, name, base, limit, meta, image, purpose):
        region = lookup_region(name)
        assert (region.base, region.limit, region.meta) == (base, limit, meta)
        assert (region.image, region.purpose) == (image, purpose)

    def test_regions_do_not_overlap(self):
        ordered = sorted(REGIONS, key=lambda r: r.base)
        for a, b in zip(ordered, ordered[1:]):
            assert a.limit <= b.base, f"{a.name} overlaps {b.name}"

    def test_regions_inside_chip(self):
        for region in REGIONS:
            assert 0 <= region.base < region.limit <= ROM_SIZE

    def test_table_is_immutable(self):
        assert isinstance(REGIONS, tuple)
        with pytest.raises(AttributeError):
            REGIONS[0].base = 0x1000

    def test_unknown_region(self):
        with pytest.raises(UnknownRegion) as exc_info:
            lookup_region("firmware")
        message = str(exc_info.value)
        assert "'firmware'" in message
        assert "qflash layout" in message
        assert "app" in exc_info.value.known

    def test_invalid_region(self):
        with pytest.raises(ValueError):
            Region("bad", 0x2000, 0x1000, 0x0, ImageType.M4, Purpose.APP)

    def test_contains(self):
        app = lookup_region("app")
        assert app.contains(0x80000)
        assert app.contains(0xEDFFF)
        assert not app.contains(0xEE000)


# =============================================================================
# Metadata Codec Tests
# =============================================================================

class TestMetadata:
    """Tests for the 12-byte metadata record."""

    def test_size(self):
        assert METADATA_SIZE == 12

    def test_encode_written_record(self):
        record = MetadataRecord.written(lookup_region("app"), 0x12345678, 112504)
        encoded = encode_metadata(record)
        assert encoded == (
            bytes([0x78, 0x56, 0x34, 0x12])
            + struct.pack("<I", 112504)
            + bytes([0x03, 0x01, 0x02, 0xFF])
        )

    def test_empty_record(self):
        record = MetadataRecord.empty(lookup_region("appffe"))
        assert encode_metadata(record) == b"\xff" * 8 + bytes([0xFF, 0x02, 0x02, 0xFF])
        assert record.is_empty
        assert not record.is_written

    def test_decode_erased_flash(self):
        record = decode_metadata(b"\xff" * 12)
        assert record.size == 0xFFFFFFFF
        assert record.is_empty
        assert record.presence_name == "empty"
        assert record.image_name == "<invalid>"
        assert record.purpose_name == "<invalid>"

    def test_decode_names(self):
        record = decode_metadata(bytes(8) + bytes([0x03, 0x03, 0x20, 0xFF]))
        assert record.presence_name == "written"
        assert record.image_name == "fpga"
        assert record.purpose_name == "fs-FAT"

    def test_unknown_tags_preserved(self):
        raw = bytes(range(1, 9)) + bytes([0x42, 0x09, 0x77, 0x00])
        record = decode_metadata(raw)
        assert record.presence == 0x42
        assert record.presence_name == "<invalid>"
        assert not record.is_written and not record.is_empty
        assert encode_metadata(record) == raw

    def test_round_trip(self):
        record = MetadataRecord(0xDEADBEEF, 0, Presence.WRITTEN, ImageType.FS, Purpose.OTA, 0)
        assert decode_metadata(encode_metadata(record)) == record

    @pytest.mark.parametrize("tags", list(itertools.product((0x00, 0xFF), repeat=4)))
    @pytest.mark.parametrize("crc,size", [
        (0, 0),
        (0xFFFFFFFF, 0xFFFFFFFF),
        (0xDEADBEEF, 112504),
    ])
    def test_round_trip_boundary_values(self, crc, size, tags):
        presence, image, purpose, reserved = tags
        record = MetadataRecord(crc, size, presence, image, purpose, reserved)
        encoded = encode_metadata(record)
        assert len(encoded) == METADATA_SIZE
        assert decode_metadata(encoded) == record

    def test_extra_bytes_ignored(self):
        raw = encode_metadata(MetadataRecord.empty(lookup_region("app")))
        assert decode_metadata(raw + b"\x00\x01\x02") == decode_metadata(raw)

    def test_short_input(self):
        with pytest.raises(MalformedMetadata) as exc_info:
            decode_metadata(b"\xff" * 11)
        assert exc_info.value.length == 11
        assert exc_info.value.expected == 12


# =============================================================================
# Protection Policy Tests
# =============================================================================

class TestProtection:

    def test_default_boundary(self):
        assert DEFAULT_PROTECT_BOUNDARY == 0x40000

    def test_below_boundary_refused(self):
        with pytest.raises(Protected) as exc_info:
            check_writable(0x20000, 0x40000)
        assert str(exc_info.value) == (
            "write protection up to 0x040000, but address=0x020000"
        )

    def test_at_boundary_allowed(self):
        check_writable(0x40000, 0x40000)
        assert is_writable(0x40000, 0x40000)

    def test_zero_boundary_allows_everything(self):
        check_writable(0, 0)
        assert is_writable(0, 0)

    def test_is_writable(self):
        assert not is_writable(0x3FFFF, 0x40000)
        assert is_writable(0x80000, 0x40000)

    @pytest.mark.parametrize("address", [-0x1000, -1, 0, 1, 0x3FFFF, 0x40000, 0x40001, ROM_SIZE])
    @pytest.mark.parametrize("boundary", [-1, 0, 1, 0x40000, 0x80000, ROM_SIZE])
    def test_writable_iff_at_or_above_boundary(self, address, boundary):
        allowed = address >= boundary
        assert is_writable(address, boundary) is allowed
        if allowed:
            check_writable(address, boundary)
        else:
            with pytest.raises(Protected) as exc_info:
                check_writable(address, boundary)
            assert exc_info.value.address == address
