"""
qflash Command-Line Interface
=============================

- **qflash**: read, write, check and disable regions of the board's
  SPI flash through its USB bootloader

The tool is a Click application; see `qflash --help`.
"""

__all__ = ["qflash"]
