"""Property stream decoder.

Turns the property streams directly below one storage (message,
recipient, attachment or embedded message) into a PropertyTable.

Two on-disk layouts feed the table, see [MS-OXMSG] 2.4:
- __properties_version1.0: a header followed by 16-byte entries
  (tag, flags, 8-byte value). Fixed-width values live inline here.
- __substg1.0_IIIITTTT streams: one per variable-length property, and
  for multi-valued variable properties a length stream plus one
  numbered stream (-NNNNNNNN) per element.

One unreadable or undecodable property never aborts the storage: it is
left out of values and its error recorded in PropertyTable.errors.
"""

import logging
import struct
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .properties import (
    PropertyTag, parse_stream_name, base_type, is_fixed_type, fixed_size,
    is_multi_valued,
    PT_SHORT, PT_LONG, PT_FLOAT, PT_DOUBLE, PT_CURRENCY, PT_APPTIME,
    PT_ERROR, PT_BOOLEAN, PT_LONG_LONG, PT_SYSTIME, PT_GUID,
    PT_STRING8, PT_UNICODE, PT_BINARY, PT_OBJECT,
    PROPERTIES_STREAM, PID_MESSAGE_CODEPAGE, PID_INTERNET_CPID, subobject_index,
)
from .codepages import decode_string8
from ..cfb.compound_file import CompoundFile
from ..cfb.directory import DirectoryEntry
from ..errors import MsgParseError, PropertyDecodeError, EncodingError
from ..utils import filetime_to_datetime

logger = logging.getLogger(__name__)

# Storage kinds, by size of the __properties_version1.0 header
STORAGE_MESSAGE = 'message'
STORAGE_EMBEDDED = 'embedded'
STORAGE_SUBOBJECT = 'subobject'

_PROPERTIES_HEADER_SIZES = {
    STORAGE_MESSAGE: 32,
    STORAGE_EMBEDDED: 24,
    STORAGE_SUBOBJECT: 8,
}

PROP_ENTRY_FMT = '<II8s'
PROP_ENTRY_SIZE = 16

_APPTIME_EPOCH = datetime(1899, 12, 30)

# Length stream entry widths for multi-valued variable properties
_MV_LENGTH_ENTRY = {
    PT_STRING8: 4,
    PT_UNICODE: 4,
    PT_BINARY: 8,
}


class PropertyTable:
    """Decoded properties of one storage.

    Attributes:
        values: PropertyTag -> decoded value (str, int, bool, float,
            datetime, bytes, or a list of those for multi-valued tags).
        errors: PropertyTag -> message for properties that failed.
        warnings: Non-fatal decode notes (lossy strings, truncation).
        codepage: Code page used for 8-bit strings, if declared.
        internet_codepage: PR_INTERNET_CPID, used for the HTML body.
    """

    def __init__(self, codepage: Optional[int] = None):
        self.values: Dict[PropertyTag, Any] = {}
        self.errors: Dict[PropertyTag, str] = {}
        self.warnings: List[str] = []
        self.codepage = codepage
        self.internet_codepage: Optional[int] = None

    def __contains__(self, tag):
        return tag in self.values

    def __len__(self):
        return len(self.values)

    def get(self, pid: int, *types: int, default=None):
        """Value of the first present tag (pid, t) for t in types.

        Without types, any type for pid matches.
        """
        if types:
            for ptype in types:
                tag = PropertyTag(pid, ptype)
                if tag in self.values:
                    return self.values[tag]
            return default
        for tag, value in self.values.items():
            if tag.prop_id == pid:
                return value
        return default

    def get_string(self, pid: int) -> Optional[str]:
        value = self.get(pid, PT_UNICODE, PT_STRING8)
        return value if isinstance(value, str) else None

    def get_binary(self, pid: int) -> Optional[bytes]:
        return self.get(pid, PT_BINARY)

    def get_int(self, pid: int) -> Optional[int]:
        return self.get(pid, PT_LONG, PT_SHORT, PT_LONG_LONG)

    def get_bool(self, pid: int) -> Optional[bool]:
        return self.get(pid, PT_BOOLEAN)

    def get_time(self, pid: int) -> Optional[datetime]:
        return self.get(pid, PT_SYSTIME)

    def has(self, pid: int) -> bool:
        return any(tag.prop_id == pid for tag in self.values)

    def error_for(self, pid: int) -> Optional[str]:
        for tag, message in self.errors.items():
            if tag.prop_id == pid:
                return message
        return None

    def fail(self, tag: PropertyTag, exc: Exception):
        self.errors[tag] = str(exc)
        logger.warning("property %s dropped: %s", tag, exc)

    def warn(self, tag: PropertyTag, message: str):
        self.warnings.append(f"{tag}: {message}")
        logger.debug("property %s: %s", tag, message)


def decode_storage(cf: CompoundFile, storage: DirectoryEntry,
                   kind: str = STORAGE_MESSAGE,
                   codepage: Optional[int] = None) -> PropertyTable:
    """Decode every property stored directly under storage.

    Args:
        cf: The open compound file.
        storage: Message, recipient, attachment or embedded message storage.
        kind: One of STORAGE_MESSAGE, STORAGE_EMBEDDED, STORAGE_SUBOBJECT.
        codepage: Code page inherited from the parent message. The
            storage's own PR_MESSAGE_CODEPAGE overrides it.

    Returns:
        PropertyTable. Never raises for individual properties.
    """
    table = PropertyTable(codepage)

    props_entry = cf.get_child(storage, PROPERTIES_STREAM)
    if props_entry is not None and props_entry.is_stream:
        try:
            raw = cf.read_stream(props_entry)
        except MsgParseError as e:
            table.warnings.append(f"{PROPERTIES_STREAM}: unreadable ({e})")
            logger.warning("%s in '%s' unreadable: %s", PROPERTIES_STREAM, storage.name, e)
        else:
            _decode_properties_stream(table, raw, _PROPERTIES_HEADER_SIZES[kind])

    groups = _group_streams(cf, storage)

    # Fixed-width values first so the code page is known before strings
    for tag in [t for t in groups if not _is_text(t)]:
        _decode_group(cf, table, tag, groups[tag])

    own_codepage = table.get(PID_MESSAGE_CODEPAGE, PT_LONG)
    if own_codepage:
        table.codepage = own_codepage
    table.internet_codepage = table.get(PID_INTERNET_CPID, PT_LONG)
    if table.codepage is None:
        table.codepage = table.internet_codepage

    for tag in [t for t in groups if _is_text(t)]:
        _decode_group(cf, table, tag, groups[tag])

    return table


def _is_text(tag: PropertyTag) -> bool:
    return base_type(tag.prop_type) in (PT_STRING8, PT_UNICODE)


def _group_streams(cf, storage):
    """Map PropertyTag -> {element index or None: stream entry}."""
    groups = defaultdict(dict)
    for child in cf.iter_children(storage):
        if not child.is_stream:
            continue
        parsed = parse_stream_name(child.name)
        if parsed is None:
            continue
        groups[parsed.tag][parsed.element] = child
    return groups


def _decode_properties_stream(table: PropertyTable, raw: bytes, header_size: int):
    """Decode the fixed-width entries of __properties_version1.0."""
    for offset in range(header_size, len(raw) - PROP_ENTRY_SIZE + 1, PROP_ENTRY_SIZE):
        tag_value, _flags, value = struct.unpack_from(PROP_ENTRY_FMT, raw, offset)
        tag = PropertyTag.from_tag(tag_value)
        if not is_fixed_type(tag.prop_type) or fixed_size(tag.prop_type) > 8:
            continue  # variable-length: the value lives in a __substg1.0_ stream
        try:
            decoded = unpack_fixed(tag.prop_type, value)
        except PropertyDecodeError as e:
            table.fail(tag, e)
            continue
        if decoded is not None:
            table.values[tag] = decoded
    if (len(raw) - header_size) % PROP_ENTRY_SIZE and len(raw) > header_size:
        table.warnings.append(f"{PROPERTIES_STREAM}: trailing partial entry ignored")


def _decode_group(cf, table, tag, streams):
    try:
        if is_multi_valued(tag.prop_type):
            value = _decode_multi(cf, table, tag, streams)
        elif None in streams:
            value = decode_value(table, tag, tag.prop_type, cf.read_stream(streams[None]))
        else:
            return  # element streams without a multi-valued type
    except MsgParseError as e:
        table.fail(tag, e)
        return
    except (struct.error, ValueError) as e:
        table.fail(tag, PropertyDecodeError(str(e)))
        return
    if value is not None:
        table.values[tag] = value


def _decode_multi(cf, table, tag, streams):
    """Decode a multi-valued property from one or several streams."""
    element_type = base_type(tag.prop_type)

    if is_fixed_type(element_type):
        if None not in streams:
            return None
        raw = cf.read_stream(streams[None])
        width = fixed_size(element_type)
        if len(raw) % width:
            table.warn(tag, f"{len(raw) % width} trailing bytes ignored")
        return [unpack_fixed(element_type, raw[i:i + width])
                for i in range(0, len(raw) - width + 1, width)]

    if element_type not in _MV_LENGTH_ENTRY:
        return None

    if None in streams:
        lengths = cf.read_stream(streams[None])
        indices = range(len(lengths) // _MV_LENGTH_ENTRY[element_type])
    else:
        indices = sorted(i for i in streams if i is not None)

    values = []
    for index in indices:
        entry = streams.get(index)
        if entry is None:
            table.warn(tag, f"element {index} missing")
            continue
        try:
            values.append(decode_value(table, tag, element_type, cf.read_stream(entry)))
        except MsgParseError as e:
            table.warn(tag, f"element {index} dropped: {e}")
    return values


def decode_value(table: PropertyTable, tag: PropertyTag, ptype: int, raw: bytes):
    """Decode one stream-stored value of type ptype."""
    if ptype == PT_UNICODE:
        return _decode_unicode(table, tag, raw)
    if ptype == PT_STRING8:
        try:
            return decode_string8(raw, table.codepage)
        except EncodingError as e:
            table.warn(tag, f"{e}; decoded lossily")
            return raw.rstrip(b'\x00').decode('utf-8', errors='replace')
    if ptype == PT_BINARY:
        return raw
    if ptype == PT_OBJECT:
        return None
    if is_fixed_type(ptype):
        return unpack_fixed(ptype, raw)
    return raw


def _decode_unicode(table, tag, raw):
    if len(raw) % 2:
        table.warn(tag, "odd-length UTF-16 stream; last byte dropped")
        raw = raw[:-1]
    try:
        text = raw.decode('utf-16-le')
    except UnicodeDecodeError as e:
        table.warn(tag, f"{EncodingError(e)}; decoded lossily")
        text = raw.decode('utf-16-le', errors='replace')
    return text.rstrip('\x00')


def unpack_fixed(ptype: int, raw: bytes):
    """Decode a fixed-width little-endian value.

    Returns None for time values holding the "no date" sentinels.

    Raises:
        PropertyDecodeError: raw is too short or the value is out of range.
    """
    size = fixed_size(ptype)
    if len(raw) < size:
        raise PropertyDecodeError(f"type {ptype:#06x} needs {size} bytes, got {len(raw)}")

    if ptype == PT_SHORT:
        return struct.unpack_from('<h', raw)[0]
    if ptype == PT_LONG:
        return struct.unpack_from('<i', raw)[0]
    if ptype == PT_ERROR:
        return struct.unpack_from('<I', raw)[0]
    if ptype == PT_BOOLEAN:
        return struct.unpack_from('<H', raw)[0] != 0
    if ptype == PT_FLOAT:
        return struct.unpack_from('<f', raw)[0]
    if ptype == PT_DOUBLE:
        return struct.unpack_from('<d', raw)[0]
    if ptype == PT_CURRENCY:
        return struct.unpack_from('<q', raw)[0] / 10000
    if ptype == PT_LONG_LONG:
        return struct.unpack_from('<q', raw)[0]
    if ptype == PT_GUID:
        return str(uuid.UUID(bytes_le=bytes(raw[:16])))
    if ptype == PT_APPTIME:
        days = struct.unpack_from('<d', raw)[0]
        try:
            return _APPTIME_EPOCH + timedelta(days=days)
        except (OverflowError, ValueError) as e:
            raise PropertyDecodeError(f"application time out of range: {days}") from e
    if ptype == PT_SYSTIME:
        try:
            return filetime_to_datetime(struct.unpack_from('<Q', raw)[0])
        except ValueError as e:
            raise PropertyDecodeError(str(e)) from e
    raise PropertyDecodeError(f"unsupported fixed type {ptype:#06x}")


def subobject_storages(cf: CompoundFile, storage: DirectoryEntry,
                       prefix: str) -> List[DirectoryEntry]:
    """Recipient or attachment storages below storage, in index order."""
    found = []
    for child in cf.iter_children(storage):
        if not child.is_storage:
            continue
        index = subobject_index(child.name, prefix)
        if index is not None:
            found.append((index, child))
    found.sort(key=lambda item: item[0])
    return [child for _index, child in found]
