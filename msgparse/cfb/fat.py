"""Sector allocation tables: FAT, DIFAT and mini-FAT.

See [MS-CFB] 2.3 (FAT), 2.5 (DIFAT) and 2.4 (mini-FAT).

Every table is a flat list where entry N holds the number of the sector
that follows sector N in its chain, or one of the special markers from
header.py. Chains are walked with a visited set and a hard cap at the
table length, so cyclic or runaway chains fail fast.
"""

import logging
import struct
from typing import List, Optional

from .header import (
    CompoundHeader, HEADER_DIFAT_COUNT,
    MAXREGSECT, ENDOFCHAIN, FREESECT,
)
from ..errors import CorruptStructureError, TruncatedError

logger = logging.getLogger(__name__)


def sector_count(data: bytes, sector_size: int) -> int:
    """Number of (possibly partial) sectors after the header sector."""
    body = max(0, len(data) - sector_size)
    return (body + sector_size - 1) // sector_size


def read_sector(data: bytes, sector_size: int, sid: int) -> bytes:
    """Return the bytes of regular sector sid.

    A short final sector is returned as-is; callers check the total length.

    Raises:
        TruncatedError: the sector starts at or past the end of data.
    """
    offset = (sid + 1) * sector_size
    if offset >= len(data):
        raise TruncatedError(f"sector {sid} at offset {offset:#x} is past end of file "
                             f"({len(data)} bytes)")
    return data[offset:offset + sector_size]


def unpack_table(raw: bytes) -> List[int]:
    """Unpack a run of little-endian uint32 sector numbers."""
    count = len(raw) // 4
    return list(struct.unpack_from(f'<{count}I', raw, 0))


def fat_sector_ids(data: bytes, header: CompoundHeader) -> List[int]:
    """Collect the FAT sector numbers from the header and the DIFAT chain."""
    sector_size = header.sector_size
    ids = list(header.difat)
    if header.num_fat_sectors <= HEADER_DIFAT_COUNT:
        return ids[:header.num_fat_sectors]

    per_difat = sector_size // 4 - 1
    sid = header.first_difat_sector
    seen = set()
    limit = max(header.num_difat_sectors, 0)
    while sid != ENDOFCHAIN and sid != FREESECT and len(ids) < header.num_fat_sectors:
        if sid > MAXREGSECT:
            raise CorruptStructureError(f"DIFAT chain points to special sector {sid:#x}")
        if sid in seen:
            raise CorruptStructureError(f"DIFAT chain loops at sector {sid}")
        if len(seen) >= limit:
            raise CorruptStructureError(
                f"DIFAT chain longer than the declared {limit} sectors")
        seen.add(sid)
        entries = unpack_table(read_sector(data, sector_size, sid))
        if len(entries) < per_difat + 1:
            raise TruncatedError(f"DIFAT sector {sid} truncated")
        ids.extend(e for e in entries[:per_difat] if e <= MAXREGSECT)
        sid = entries[per_difat]

    if len(ids) < header.num_fat_sectors:
        raise CorruptStructureError(
            f"found {len(ids)} FAT sectors, header declares {header.num_fat_sectors}")
    return ids[:header.num_fat_sectors]


def load_fat(data: bytes, header: CompoundHeader) -> List[int]:
    """Read the complete FAT.

    Returns:
        List mapping sector number -> next sector number.
    """
    sector_size = header.sector_size
    fat = []
    for sid in fat_sector_ids(data, header):
        raw = read_sector(data, sector_size, sid)
        if len(raw) < sector_size:
            raise TruncatedError(f"FAT sector {sid} truncated")
        fat.extend(unpack_table(raw))
    logger.debug("FAT loaded: %d entries, %d sectors in file",
                 len(fat), sector_count(data, sector_size))
    return fat


def follow_chain(table: List[int], start: int, needed: Optional[int] = None,
                 label: str = 'FAT') -> List[int]:
    """Walk a sector chain starting at start.

    Args:
        table: FAT or mini-FAT entries.
        start: First sector of the chain.
        needed: Stop once this many sectors are collected. None walks to
            ENDOFCHAIN.
        label: Table name for error messages.

    Returns:
        Sector numbers in chain order.

    Raises:
        CorruptStructureError: the chain loops, leaves the table, hits a
            special marker, or ends before needed sectors.
    """
    chain = []
    seen = set()
    sid = start
    cap = len(table)
    while sid != ENDOFCHAIN:
        if needed is not None and len(chain) >= needed:
            return chain
        if sid > MAXREGSECT or sid >= cap:
            raise CorruptStructureError(
                f"{label} chain from {start} reaches invalid sector {sid:#x} "
                f"after {len(chain)} sectors")
        if sid in seen:
            raise CorruptStructureError(f"{label} chain from {start} loops at sector {sid}")
        seen.add(sid)
        chain.append(sid)
        sid = table[sid]
    if needed is not None and len(chain) < needed:
        raise CorruptStructureError(
            f"{label} chain from {start} ends after {len(chain)} of {needed} sectors")
    return chain


def read_chain(data: bytes, fat: List[int], sector_size: int, start: int,
               size: Optional[int] = None) -> bytes:
    """Concatenate the regular sectors of a chain, truncated to size."""
    needed = None if size is None else (size + sector_size - 1) // sector_size
    if needed == 0:
        return b''
    parts = [read_sector(data, sector_size, sid)
             for sid in follow_chain(fat, start, needed)]
    content = b''.join(parts)
    if size is not None:
        if len(content) < size:
            raise TruncatedError(f"stream at sector {start} needs {size} bytes, "
                                 f"file holds {len(content)}")
        content = content[:size]
    return content


def load_minifat(data: bytes, header: CompoundHeader, fat: List[int]) -> List[int]:
    """Read the mini-FAT through the regular FAT."""
    if header.num_minifat_sectors == 0 or header.first_minifat_sector in (ENDOFCHAIN, FREESECT):
        return []
    raw = read_chain(data, fat, header.sector_size, header.first_minifat_sector,
                     header.num_minifat_sectors * header.sector_size)
    return unpack_table(raw)
