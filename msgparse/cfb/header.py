"""Compound file header (512 bytes).

Implements the header structure from [MS-CFB] 2.2.
Version 3 files use 512-byte sectors, version 4 files 4096-byte sectors;
in both cases sector N starts at byte (N + 1) * sector_size.
"""

import struct
from dataclasses import dataclass
from typing import List

from ..errors import FormatError, TruncatedError

MAGIC = b'\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1'
BYTE_ORDER_LE = 0xFFFE
HEADER_SIZE = 512

# Header fields up to (not including) the 109 inline DIFAT entries
HEADER_FMT = '<8s16sHHHHH6sIIIIIIIII'
HEADER_FIXED_SIZE = struct.calcsize(HEADER_FMT)  # 0x4C
HEADER_DIFAT_COUNT = 109

# Special sector numbers
MAXREGSECT = 0xFFFFFFFA
DIFSECT = 0xFFFFFFFC
FATSECT = 0xFFFFFFFD
ENDOFCHAIN = 0xFFFFFFFE
FREESECT = 0xFFFFFFFF

# Sector shift per major version
_VERSION_SECTOR_SHIFT = {3: 9, 4: 12}


@dataclass
class CompoundHeader:
    """Decoded compound file header."""
    minor_version: int
    major_version: int
    sector_shift: int
    mini_sector_shift: int
    num_dir_sectors: int
    num_fat_sectors: int
    first_dir_sector: int
    mini_stream_cutoff: int
    first_minifat_sector: int
    num_minifat_sectors: int
    first_difat_sector: int
    num_difat_sectors: int
    difat: List[int]

    @property
    def sector_size(self) -> int:
        return 1 << self.sector_shift

    @property
    def mini_sector_size(self) -> int:
        return 1 << self.mini_sector_shift


def parse_header(data: bytes) -> CompoundHeader:
    """Parse and validate the header at the start of data.

    Args:
        data: The full file contents (at least the first 512 bytes).

    Returns:
        CompoundHeader with the inline DIFAT entries (free slots dropped).

    Raises:
        FormatError: wrong magic, byte order or sector size.
        TruncatedError: data shorter than the header.
    """
    if len(data) < len(MAGIC) or data[:len(MAGIC)] != MAGIC:
        raise FormatError("not a compound file: bad signature")
    if len(data) < HEADER_SIZE:
        raise TruncatedError(f"header truncated: {len(data)} of {HEADER_SIZE} bytes")

    (_magic, _clsid, minor_version, major_version, byte_order,
     sector_shift, mini_sector_shift, _reserved,
     num_dir_sectors, num_fat_sectors, first_dir_sector, _transaction,
     mini_stream_cutoff, first_minifat_sector, num_minifat_sectors,
     first_difat_sector, num_difat_sectors) = struct.unpack_from(HEADER_FMT, data, 0)

    if byte_order != BYTE_ORDER_LE:
        raise FormatError(f"unsupported byte order mark {byte_order:#06x}")
    if sector_shift not in _VERSION_SECTOR_SHIFT.values():
        raise FormatError(f"unsupported sector shift {sector_shift}")
    if not 0 < mini_sector_shift < sector_shift:
        raise FormatError(f"invalid mini sector shift {mini_sector_shift}")

    difat = list(struct.unpack_from(f'<{HEADER_DIFAT_COUNT}I', data, HEADER_FIXED_SIZE))
    difat = [sid for sid in difat[:num_fat_sectors] if sid <= MAXREGSECT]

    return CompoundHeader(
        minor_version=minor_version,
        major_version=major_version,
        sector_shift=sector_shift,
        mini_sector_shift=mini_sector_shift,
        num_dir_sectors=num_dir_sectors,
        num_fat_sectors=num_fat_sectors,
        first_dir_sector=first_dir_sector,
        mini_stream_cutoff=mini_stream_cutoff,
        first_minifat_sector=first_minifat_sector,
        num_minifat_sectors=num_minifat_sectors,
        first_difat_sector=first_difat_sector,
        num_difat_sectors=num_difat_sectors,
        difat=difat,
    )
