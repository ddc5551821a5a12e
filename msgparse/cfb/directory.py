"""Directory entries and storage tree reconstruction.

Implements the directory entry structure from [MS-CFB] 2.6.
On disk, the children of each storage form a red-black tree linked by
left/right sibling indices. The reader flattens every such tree into an
ordered name -> index map on the parent entry; all entries stay in one
flat list and refer to each other by index only.
"""

import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import CorruptStructureError

DIR_ENTRY_SIZE = 128
DIR_ENTRY_FMT = '<64sHBBIII16sIQQIQ'

# Object types
TYPE_UNALLOCATED = 0x00
TYPE_STORAGE = 0x01
TYPE_STREAM = 0x02
TYPE_ROOT = 0x05

NOSTREAM = 0xFFFFFFFF

_TYPE_NAMES = {
    TYPE_STORAGE: 'storage',
    TYPE_STREAM: 'stream',
    TYPE_ROOT: 'root',
}


@dataclass
class DirectoryEntry:
    """One 128-byte directory entry."""
    index: int
    name: str
    entry_type: int
    left: int
    right: int
    child: int
    start_sector: int
    size: int
    parent: Optional[int] = None
    children: Dict[str, int] = field(default_factory=dict)

    @property
    def is_storage(self) -> bool:
        return self.entry_type in (TYPE_STORAGE, TYPE_ROOT)

    @property
    def is_stream(self) -> bool:
        return self.entry_type == TYPE_STREAM

    @property
    def type_name(self) -> str:
        return _TYPE_NAMES.get(self.entry_type, 'unknown')


def parse_entry(raw: bytes, index: int, major_version: int) -> DirectoryEntry:
    """Decode a single directory entry.

    Version 3 files may leave garbage in the high half of the size field;
    only the low 32 bits are used there.
    """
    (name_raw, name_len, entry_type, _color, left, right, child,
     _clsid, _state, _created, _modified, start, size) = struct.unpack(DIR_ENTRY_FMT, raw)

    name_len = min(name_len, 64)
    name = name_raw[:max(name_len - 2, 0)].decode('utf-16-le', errors='replace')
    if major_version == 3:
        size &= 0xFFFFFFFF

    return DirectoryEntry(
        index=index,
        name=name,
        entry_type=entry_type,
        left=left,
        right=right,
        child=child,
        start_sector=start,
        size=size,
    )


def parse_entries(raw: bytes, major_version: int) -> List[Optional[DirectoryEntry]]:
    """Decode the directory stream. Unallocated slots become None."""
    entries = []
    for i in range(len(raw) // DIR_ENTRY_SIZE):
        chunk = raw[i * DIR_ENTRY_SIZE:(i + 1) * DIR_ENTRY_SIZE]
        entry = parse_entry(chunk, i, major_version)
        entries.append(entry if entry.entry_type != TYPE_UNALLOCATED else None)
    return entries


def build_tree(entries: List[Optional[DirectoryEntry]]) -> DirectoryEntry:
    """Link every storage to its children.

    Walks each storage's sibling tree in order (left subtree, node, right
    subtree) without recursion. Each entry may be reached exactly once.

    Returns:
        The root entry (index 0).

    Raises:
        CorruptStructureError: missing root, dangling or repeated index,
            or duplicate child names within one storage.
    """
    if not entries or entries[0] is None or entries[0].entry_type != TYPE_ROOT:
        raise CorruptStructureError("directory has no root entry")

    root = entries[0]
    visited = {0}
    pending = [root]

    while pending:
        storage = pending.pop()
        for idx in _in_order(entries, storage.child, visited):
            entry = entries[idx]
            key = entry.name.upper()
            if key in storage.children:
                raise CorruptStructureError(
                    f"duplicate name '{entry.name}' in storage '{storage.name}'")
            entry.parent = storage.index
            storage.children[key] = idx
            if entry.is_storage:
                pending.append(entry)

    return root


def _in_order(entries, start, visited):
    """Yield indices of a sibling tree in order, marking them visited."""
    stack = []
    idx = start
    while stack or idx != NOSTREAM:
        while idx != NOSTREAM:
            entry = _checked(entries, idx, visited)
            stack.append(entry)
            idx = entry.left
        entry = stack.pop()
        yield entry.index
        idx = entry.right


def _checked(entries, idx, visited):
    if idx >= len(entries) or entries[idx] is None:
        raise CorruptStructureError(f"directory link to missing entry {idx}")
    if idx in visited:
        raise CorruptStructureError(f"directory entry {idx} is linked more than once")
    entry = entries[idx]
    if entry.entry_type == TYPE_ROOT:
        raise CorruptStructureError(f"root entry type found at index {idx}")
    visited.add(idx)
    return entry
