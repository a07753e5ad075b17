"""
qflash - SPI Flash Programming Command-Line Interface
=====================================================

This module implements the command-line interface for programming the
board's SPI flash through its USB bootloader. The board must be in
programming mode (bootloader running, USB serial device present).

Flash Layout
------------
The flash is divided into fixed regions, each described by a 12-byte
metadata record that the bootloader checks before using the region:

    bootloader  [0x00000,0x10000)  meta 0x1F000
    bootfpga    [0x20000,0x40000)  meta 0x10000
    appfpga     [0x40000,0x60000)  meta 0x11000
    appffe      [0x60000,0x80000)  meta 0x12000
    app         [0x80000,0xEE000)  meta 0x13000

Usage Examples
--------------
Show the region table and what the board has recorded for each region:
    $ qflash layout

Flash a new application and confirm its CRC:
    $ qflash write --section app firmware.bin
    $ qflash check app

Dump the application to a file, or as hex to the terminal:
    $ qflash read --section app app.bin
    $ qflash read --addr 0x80000 --limit 0x80100 -

Stop the bootloader from running the application:
    $ qflash disable app

Write Protection
----------------
Writes below the protection boundary (default 0x40000) are refused, which
keeps the bootloader and its FPGA image safe. Use --protect to move the
boundary when you really mean to replace them.

Exit Codes
----------
0 - Success
1 - Connection, flash or integrity error
2 - Invalid arguments or configuration error
3 - Internal error
"""

import logging
from pathlib import Path
from typing import Callable, Optional

import click

from qflash import __version__
from qflash.cli.errors import handle_cli_exception
from qflash.comms.serial import VALID_BAUD_RATES, format_port_list, list_serial_ports
from qflash.config import DEFAULT_PORT, FlashConfig, get_default_config
from qflash.errors import UnknownRegion
from qflash.flash import (
    ROM_SIZE,
    ReadProgress,
    Region,
    WriteProgress,
    WriteStep,
    describe_layout,
    disable_region,
    lookup_region,
    open_device,
    read_range,
    read_region,
    validate_region,
    write_range,
    write_region,
)

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = 0x80000


# =============================================================================
# Address Parameter Type
# =============================================================================

class AddressType(click.ParamType):
    """
    Click parameter type for flash addresses and byte counts.

    Accepts decimal, 0x-prefixed hex, 0o octal or 0b binary.
    """
    name = "address"

    def convert(self, value, param: Optional[click.Parameter],
                ctx: Optional[click.Context]) -> int:
        if isinstance(value, int):
            return value
        try:
            number = int(value, 0)
        except ValueError:
            self.fail(f"{value!r} is not a valid address or size", param, ctx)
        if number < 0:
            self.fail(f"{value!r} must not be negative", param, ctx)
        return number


ADDRESS = AddressType()


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Holds the effective FlashConfig (defaults, then environment, then
    command-line options) and the verbosity.
    """

    def __init__(self) -> None:
        self.config: FlashConfig = FlashConfig()
        self.verbose: bool = False

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def read_progress(self) -> Optional[ReadProgress]:
        return progress_bar if self.config.progress else None

    def write_progress(self) -> Optional[WriteProgress]:
        return write_progress_bar if self.config.progress else None


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int, marker: str = " ") -> None:
    """Simple text progress bar for reads and writes."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes) {marker}", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def write_progress_bar(step: WriteStep, current: int, total: int) -> None:
    """Write progress; a '*' marks a sector erase in progress."""
    progress_bar(current, total, "*" if step is WriteStep.ERASE else " ")


def format_hex_dump(address: int, data: bytes, width: int = 16) -> str:
    """
    Format data as a hex dump labelled with flash addresses.

    Example:
        >>> format_hex_dump(0x80000, b"0123456789abcdef")
        '00080000: 30 31 32 33 34 35 36 37 38 39 61 62 63 64 65 66  0123456789abcdef'
    """
    lines = []
    for offset in range(0, len(data), width):
        chunk = data[offset:offset + width]
        hex_part = " ".join(f"{b:02x}" for b in chunk)
        text = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        lines.append(f"{address + offset:08x}: {hex_part:<{width * 3 - 1}}  {text}")
    return "\n".join(lines)


def lookup_section(name: str, param_hint: str) -> Region:
    """Look up a region named on the command line; unknown names are bad arguments."""
    try:
        return lookup_region(name)
    except UnknownRegion as e:
        raise click.BadParameter(str(e), param_hint=param_hint) from e


def _run(ctx: Context, action: Callable[[], None], error_type: Optional[str] = None) -> None:
    """Run a command body, mapping any failure to an exit code."""
    try:
        action()
    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type=error_type)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help=f"Serial port of the board (default: $QFLASH_PORT or {DEFAULT_PORT})",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Baud rate (default: 115200)",
)
@click.option(
    "--latency",
    type=float,
    default=None,
    help="Seconds to wait for an erase or program to finish (default: 1.0)",
)
@click.option(
    "--reset",
    is_flag=True,
    help="Reset the flash chip before identifying it",
)
@click.option(
    "--protect",
    type=ADDRESS,
    default=None,
    help="Refuse writes below this address (default: 0x40000)",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Do not show progress bars",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output (logs every command sent to the board)",
)
@click.version_option(version=__version__, prog_name="qflash")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[str],
    latency: Optional[float],
    reset: bool,
    protect: Optional[int],
    no_progress: bool,
    verbose: bool,
) -> None:
    """
    Program the SPI flash of a board through its USB bootloader.

    Put the board in programming mode first, then use 'qflash layout'
    to confirm the connection.

    Environment variables QFLASH_PORT, QFLASH_BAUD, QFLASH_LATENCY,
    QFLASH_PROTECT, QFLASH_RESET and QFLASH_PROGRESS set defaults that
    the options above override.
    """
    try:
        base = get_default_config()
        ctx.config = base.with_overrides(
            port=port,
            baud_rate=int(baud) if baud else None,
            latency=latency,
            protect=protect,
            reset=True if reset else None,
            progress=False if no_progress else None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    ctx.verbose = verbose
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        qflash ports
        qflash ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Put the board in programming mode and reconnect USB")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    if any(p.device == ctx.config.port for p in port_list):
        click.echo(f"\nConfigured port present: {ctx.config.port}")
    else:
        click.echo(f"\nConfigured port not found: {ctx.config.port}")


# =============================================================================
# Identify and Layout Commands
# =============================================================================

@main.command()
@pass_context
def identify(ctx: Context) -> None:
    """
    Connect to the board and print the flash chip's JEDEC ID.

    Example:
        qflash identify
    """
    def action() -> None:
        with open_device(ctx.config) as device:
            hi, lo = device.device_id
            click.echo(
                f"Flash: MID=0x{device.manufacturer_id:02X}, DID=0x{hi:02X},0x{lo:02X}"
            )

    _run(ctx, action)


@main.command()
@pass_context
def layout(ctx: Context) -> None:
    """
    List the flash regions and their metadata records.

    Each line shows the region name, the image size recorded in its
    metadata, the region's address range, the metadata address, the
    decoded presence/image/purpose tags and the recorded CRC.

    Example:
        qflash layout
    """
    def action() -> None:
        with open_device(ctx.config) as device:
            for region, meta in describe_layout(device):
                click.echo(
                    f"{region.name:<10} {meta.size:10d} "
                    f"[0x{region.base:05x},0x{region.limit:05x}) "
                    f"0x{region.meta:05x}="
                    f"{{{meta.presence_name:>10} {meta.image_name:>10} {meta.purpose_name:>10}}} "
                    f"{meta.crc:08X}"
                )

    _run(ctx, action)


# =============================================================================
# Check Command
# =============================================================================

@main.command()
@click.argument("section")
@pass_context
def check(ctx: Context, section: str) -> None:
    """
    Validate the CRC of a region against its metadata.

    SECTION is a region name (see 'qflash layout').

    Example:
        qflash check app
    """
    def action() -> None:
        lookup_section(section, "'SECTION'")
        with open_device(ctx.config) as device:
            validate_region(device, section, ctx.read_progress())
        click.echo(f"{section!r} OK")

    _run(ctx, action, "Check")


# =============================================================================
# Read Command
# =============================================================================

@main.command()
@click.argument("output", type=click.Path(dir_okay=False, allow_dash=True))
@click.option(
    "--section", "-s",
    type=str,
    default=None,
    help="Region to read, up to its recorded size (overrides --addr/--limit)",
)
@click.option(
    "--addr",
    type=ADDRESS,
    default=DEFAULT_ADDRESS,
    show_default="0x80000",
    help="First address to read",
)
@click.option(
    "--limit",
    type=ADDRESS,
    default=ROM_SIZE,
    show_default="0x200000",
    help="One more than the last address to read",
)
@pass_context
def read(ctx: Context, output: str, section: Optional[str], addr: int, limit: int) -> None:
    """
    Read flash contents to a file.

    OUTPUT is the file to write, or '-' to print a hex dump.

    Example:
        qflash read --section app app.bin
        qflash read --addr 0x13000 --limit 0x1300c -
    """
    def action() -> None:
        region = lookup_section(section, "'--section'") if section else None
        to_terminal = output == "-"
        progress = None if to_terminal else ctx.read_progress()

        with open_device(ctx.config) as device:
            if region is not None:
                start = region.base
                data = read_region(device, region, progress)
            else:
                start = addr
                data = read_range(device, addr, limit, progress)

        if to_terminal:
            click.echo(format_hex_dump(start, data))
        else:
            Path(output).write_bytes(data)
            click.echo(f"Read {len(data)} bytes from 0x{start:06x} to {output}")

    _run(ctx, action, "Read")


# =============================================================================
# Write Command
# =============================================================================

@main.command()
@click.argument("input_file", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--section", "-s",
    type=str,
    default=None,
    help="Region to write; its metadata is updated afterwards "
         "(overrides --addr/--limit)",
)
@click.option(
    "--addr",
    type=ADDRESS,
    default=DEFAULT_ADDRESS,
    show_default="0x80000",
    help="First address to write (must be 4096-byte aligned)",
)
@click.option(
    "--limit",
    type=ADDRESS,
    default=ROM_SIZE,
    show_default="0x200000",
    help="One more than the last address the data may occupy",
)
@click.option(
    "--skip",
    type=ADDRESS,
    default=0,
    help="Bytes at the start of INPUT to skip",
)
@pass_context
def write(
    ctx: Context,
    input_file: str,
    section: Optional[str],
    addr: int,
    limit: int,
    skip: int,
) -> None:
    """
    Write a file to flash.

    With --section the image is written at the region base and the
    region's metadata is then rewritten with the image size and CRC.
    With --addr/--limit only the data is written.

    INPUT is the file to write.

    Example:
        qflash write --section app firmware.bin
        qflash write --addr 0x60000 --limit 0x80000 --skip 16 ffe.bin
    """
    def action() -> None:
        region = lookup_section(section, "'--section'") if section else None
        data = Path(input_file).read_bytes()
        if skip > len(data):
            raise click.BadParameter(
                f"unable to skip 0x{skip:06x} bytes of 0x{len(data):06x} "
                f"from file {input_file!r}",
                param_hint="'--skip'",
            )
        data = data[skip:]
        progress = ctx.write_progress()

        with open_device(ctx.config) as device:
            if region is not None:
                logger.debug(
                    "Writing %r from offset 0x%06x (0x%06x bytes) to %r",
                    input_file, skip, len(data), region.name,
                )
                record = write_region(device, region, data, ctx.config.protect, progress)
                click.echo(
                    f"Wrote {len(data)} bytes to {region.name!r} (crc {record.crc:08X})"
                )
            else:
                write_range(device, addr, limit, data, ctx.config.protect, progress)
                click.echo(f"Wrote {len(data)} bytes at 0x{addr:06x}")

    _run(ctx, action, "Write")


# =============================================================================
# Disable Command
# =============================================================================

@main.command()
@click.argument("section")
@pass_context
def disable(ctx: Context, section: str) -> None:
    """
    Disable a region by marking its metadata empty.

    The region's data is left untouched; the bootloader ignores it.

    SECTION is a region name (see 'qflash layout').

    Example:
        qflash disable app
    """
    def action() -> None:
        region = lookup_section(section, "'SECTION'")
        with open_device(ctx.config) as device:
            disable_region(device, region, ctx.config.protect, ctx.write_progress())
        click.echo(f"Disabled {region.name!r}")

    _run(ctx, action, "Disable")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
