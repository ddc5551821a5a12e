"""Compound File Binary Format container.

Ties the header, allocation tables and directory together and exposes
stream reads by directory entry.

Usage:
    cf = CompoundFile.from_bytes(data)
    props = cf.find('__properties_version1.0')
    raw = cf.read_stream(props)
"""

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .header import parse_header, CompoundHeader, ENDOFCHAIN, FREESECT
from .fat import load_fat, load_minifat, read_chain, follow_chain, sector_count
from .directory import DirectoryEntry, parse_entries, build_tree, TYPE_ROOT
from ..errors import CorruptStructureError, TruncatedError

logger = logging.getLogger(__name__)


class CompoundFile:
    """A parsed compound file.

    The instance keeps a reference to the input buffer for its lifetime.
    read_stream() returns fresh bytes objects, so decoded data does not
    pin the buffer once the CompoundFile is dropped.
    """

    def __init__(self, data: bytes, header: CompoundHeader, fat: List[int],
                 minifat: List[int], entries: List[Optional[DirectoryEntry]],
                 root: DirectoryEntry):
        self._data = data
        self.header = header
        self.fat = fat
        self.minifat = minifat
        self.entries = entries
        self.root = root
        self._ministream: Optional[bytes] = None

    @classmethod
    def from_bytes(cls, data: bytes) -> 'CompoundFile':
        """Parse a compound file held in memory.

        Raises:
            FormatError: not a compound file.
            CorruptStructureError: inconsistent FAT or directory.
            TruncatedError: structures past the end of data.
        """
        data = bytes(data)
        header = parse_header(data)
        fat = load_fat(data, header)

        if header.first_dir_sector in (ENDOFCHAIN, FREESECT):
            raise CorruptStructureError("header has no directory sector")
        dir_raw = read_chain(data, fat, header.sector_size, header.first_dir_sector)
        entries = parse_entries(dir_raw, header.major_version)
        root = build_tree(entries)

        minifat = load_minifat(data, header, fat)
        logger.debug("compound file v%d: sector size %d, %d directory entries, "
                     "%d mini-FAT entries",
                     header.major_version, header.sector_size,
                     sum(1 for e in entries if e is not None), len(minifat))
        return cls(data, header, fat, minifat, entries, root)

    @classmethod
    def open(cls, path) -> 'CompoundFile':
        """Read path fully and parse it."""
        with open(Path(path), 'rb') as f:
            return cls.from_bytes(f.read())

    @property
    def sector_size(self) -> int:
        return self.header.sector_size

    @property
    def mini_sector_size(self) -> int:
        return self.header.mini_sector_size

    @property
    def mini_stream_cutoff(self) -> int:
        return self.header.mini_stream_cutoff

    @property
    def total_sectors(self) -> int:
        return sector_count(self._data, self.sector_size)

    # --- Navigation ---

    def entry(self, index: int) -> DirectoryEntry:
        entry = self.entries[index] if 0 <= index < len(self.entries) else None
        if entry is None:
            raise CorruptStructureError(f"no directory entry {index}")
        return entry

    def get_child(self, storage: DirectoryEntry, name: str) -> Optional[DirectoryEntry]:
        """Look up a direct child by name (case-insensitive)."""
        idx = storage.children.get(name.upper())
        return self.entries[idx] if idx is not None else None

    def iter_children(self, storage: DirectoryEntry) -> Iterator[DirectoryEntry]:
        for idx in storage.children.values():
            yield self.entries[idx]

    def find(self, path: str, storage: Optional[DirectoryEntry] = None) -> Optional[DirectoryEntry]:
        """Resolve a '/'-separated path below storage (default: root)."""
        node = storage or self.root
        for part in (p for p in path.split('/') if p):
            if not node.is_storage:
                return None
            node = self.get_child(node, part)
            if node is None:
                return None
        return node

    def walk(self, storage: Optional[DirectoryEntry] = None,
             prefix: str = '') -> Iterator[Tuple[str, DirectoryEntry]]:
        """Yield (path, entry) for every entry below storage, depth first."""
        for child in self.iter_children(storage or self.root):
            path = f"{prefix}{child.name}"
            yield path, child
            if child.is_storage:
                yield from self.walk(child, path + '/')

    # --- Stream data ---

    def read_stream(self, entry: DirectoryEntry) -> bytes:
        """Return the full content of a stream entry.

        Streams below the mini stream cutoff live in the mini stream and
        follow the mini-FAT; everything else follows the FAT.

        Raises:
            CorruptStructureError: broken or cyclic chain.
            TruncatedError: chain data past the end of the file.
        """
        if not entry.is_stream and entry.entry_type != TYPE_ROOT:
            raise CorruptStructureError(f"'{entry.name}' is not a stream")
        if entry.size == 0:
            return b''
        if entry.entry_type != TYPE_ROOT and entry.size < self.mini_stream_cutoff:
            return self._read_mini(entry)
        return read_chain(self._data, self.fat, self.sector_size,
                          entry.start_sector, entry.size)

    def _read_mini(self, entry: DirectoryEntry) -> bytes:
        ministream = self._get_ministream()
        mss = self.mini_sector_size
        needed = (entry.size + mss - 1) // mss
        parts = [ministream[sid * mss:(sid + 1) * mss]
                 for sid in follow_chain(self.minifat, entry.start_sector, needed,
                                         label='mini-FAT')]
        content = b''.join(parts)
        if len(content) < entry.size:
            raise TruncatedError(f"'{entry.name}' needs {entry.size} bytes, "
                                 f"mini stream holds {len(content)}")
        return content[:entry.size]

    def _get_ministream(self) -> bytes:
        if self._ministream is None:
            root = self.root
            if root.size == 0 or root.start_sector in (ENDOFCHAIN, FREESECT):
                self._ministream = b''
            else:
                self._ministream = read_chain(self._data, self.fat, self.sector_size,
                                              root.start_sector, root.size)
        return self._ministream
