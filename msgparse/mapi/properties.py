"""MAPI property tags, types, and .msg storage naming.

Property IDs and types follow [MS-OXPROPS] / [MS-OXCDATA] 2.11.1.
Storage and stream naming follows [MS-OXMSG] 2.1 and 2.2.
"""

import re
from typing import NamedTuple, Optional

# --- Property Types (low 2 bytes of property tag) ---
PT_UNSPECIFIED = 0x0000
PT_NULL = 0x0001
PT_SHORT = 0x0002  # 16-bit integer
PT_LONG = 0x0003  # 32-bit integer
PT_FLOAT = 0x0004  # 32-bit float
PT_DOUBLE = 0x0005  # 64-bit float
PT_CURRENCY = 0x0006  # 64-bit integer, scaled by 10000
PT_APPTIME = 0x0007  # double, days since 1899-12-30
PT_ERROR = 0x000A  # 32-bit SCODE
PT_BOOLEAN = 0x000B  # 16-bit boolean (in 8-byte slot)
PT_OBJECT = 0x000D  # Embedded object (storage)
PT_LONG_LONG = 0x0014  # 64-bit integer
PT_STRING8 = 0x001E  # 8-bit string, code page dependent
PT_UNICODE = 0x001F  # UTF-16LE string
PT_SYSTIME = 0x0040  # FILETIME (8 bytes)
PT_GUID = 0x0048  # 16-byte GUID
PT_BINARY = 0x0102  # Binary blob

# MS-OXCDATA names
PT_I8 = PT_LONG_LONG
PT_CLSID = PT_GUID

MV_FLAG = 0x1000
PT_MV_SHORT = MV_FLAG | PT_SHORT
PT_MV_LONG = MV_FLAG | PT_LONG
PT_MV_FLOAT = MV_FLAG | PT_FLOAT
PT_MV_DOUBLE = MV_FLAG | PT_DOUBLE
PT_MV_CURRENCY = MV_FLAG | PT_CURRENCY
PT_MV_APPTIME = MV_FLAG | PT_APPTIME
PT_MV_LONG_LONG = MV_FLAG | PT_LONG_LONG
PT_MV_STRING8 = MV_FLAG | PT_STRING8
PT_MV_UNICODE = MV_FLAG | PT_UNICODE
PT_MV_SYSTIME = MV_FLAG | PT_SYSTIME
PT_MV_GUID = MV_FLAG | PT_GUID
PT_MV_BINARY = MV_FLAG | PT_BINARY

# Fixed-size property data lengths
PROP_TYPE_SIZES = {
    PT_SHORT: 2,
    PT_LONG: 4,
    PT_FLOAT: 4,
    PT_DOUBLE: 8,
    PT_CURRENCY: 8,
    PT_APPTIME: 8,
    PT_ERROR: 4,
    PT_BOOLEAN: 2,
    PT_LONG_LONG: 8,
    PT_SYSTIME: 8,
    PT_GUID: 16,
}


def is_fixed_type(prop_type):
    return prop_type in PROP_TYPE_SIZES


def fixed_size(prop_type):
    return PROP_TYPE_SIZES.get(prop_type, 0)


def is_multi_valued(prop_type):
    return bool(prop_type & MV_FLAG)


def base_type(prop_type):
    return prop_type & ~MV_FLAG


def prop_tag(prop_id, prop_type):
    return (prop_id << 16) | prop_type


def prop_id(tag):
    return (tag >> 16) & 0xFFFF


def prop_type(tag):
    return tag & 0xFFFF


class PropertyTag(NamedTuple):
    """A property ID + type pair; one decoded unit."""
    prop_id: int
    prop_type: int

    @classmethod
    def from_tag(cls, tag: int) -> 'PropertyTag':
        return cls(prop_id(tag), prop_type(tag))

    @property
    def tag(self) -> int:
        return prop_tag(self.prop_id, self.prop_type)

    @property
    def is_multi_valued(self) -> bool:
        return is_multi_valued(self.prop_type)

    def __str__(self):
        return f"{self.prop_id:04X}{self.prop_type:04X}"


# --- Storage / stream names ---
PROPERTIES_STREAM = '__properties_version1.0'
RECIP_PREFIX = '__recip_version1.0_#'
ATTACH_PREFIX = '__attach_version1.0_#'
SUBSTG_PREFIX = '__substg1.0_'

_SUBSTG_RE = re.compile(
    r'^__substg1\.0_([0-9A-Fa-f]{4})([0-9A-Fa-f]{4})(?:-([0-9A-Fa-f]{8}))?$')
_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")


class StreamName(NamedTuple):
    """A parsed __substg1.0_ stream name."""
    tag: PropertyTag
    element: Optional[int]  # index suffix of a multi-valued element stream


def parse_stream_name(name: str) -> Optional[StreamName]:
    """Parse '__substg1.0_IIIITTTT[-NNNNNNNN]'; None for anything else."""
    match = _SUBSTG_RE.match(name)
    if not match:
        return None
    pid, ptype, element = match.groups()
    return StreamName(PropertyTag(int(pid, 16), int(ptype, 16)),
                      int(element, 16) if element is not None else None)


def substg_name(tag: PropertyTag, element: Optional[int] = None) -> str:
    """Build the stream name for a property (inverse of parse_stream_name)."""
    name = f"{SUBSTG_PREFIX}{tag}"
    if element is not None:
        name += f"-{element:08X}"
    return name


def subobject_index(name: str, prefix: str) -> Optional[int]:
    """Numeric suffix of a recipient / attachment storage name, or None."""
    if not name.upper().startswith(prefix.upper()):
        return None
    suffix = name[len(prefix):]
    if len(suffix) != 8 or not _HEX_RE.match(suffix):
        return None
    return int(suffix, 16)


# --- Message Properties ---
PID_MESSAGE_CLASS = 0x001A
PID_SUBJECT = 0x0037
PID_CLIENT_SUBMIT_TIME = 0x0039
PID_SENT_REPRESENTING_SEARCH_KEY = 0x003B
PID_SENT_REPRESENTING_NAME = 0x0042
PID_SENT_REPRESENTING_EMAIL = 0x0065
PID_TRANSPORT_MESSAGE_HEADERS = 0x007D
PID_DISPLAY_BCC = 0x0E02
PID_DISPLAY_CC = 0x0E03
PID_DISPLAY_TO = 0x0E04
PID_MESSAGE_DELIVERY_TIME = 0x0E06
PID_BODY = 0x1000
PID_RTF_COMPRESSED = 0x1009
PID_HTML = 0x1013
PID_INTERNET_MESSAGE_ID = 0x1035
PID_INTERNET_CPID = 0x3FDE  # Internet code page (65001 = UTF-8)
PID_MESSAGE_CODEPAGE = 0x3FFD  # Message code page

# --- Sender Properties ---
PID_SENDER_NAME = 0x0C1A
PID_SENDER_SEARCH_KEY = 0x0C1D
PID_SENDER_EMAIL_ADDRESS = 0x0C1F
PID_SENDER_SMTP_ADDRESS = 0x5D01
PID_SENT_REPRESENTING_SMTP_ADDRESS = 0x5D02

# --- Recipient Properties ---
PID_RECIPIENT_TYPE = 0x0C15
PID_DISPLAY_NAME = 0x3001
PID_EMAIL_ADDRESS = 0x3003
PID_SMTP_ADDRESS = 0x39FE

# Recipient types
MAPI_TO = 1
MAPI_CC = 2
MAPI_BCC = 3
# High bits carry MAPI_P1 / MAPI_SUBMITTED flags
RECIPIENT_TYPE_MASK = 0x03

# --- Attachment Properties ---
PID_ATTACH_DATA = 0x3701  # PT_BINARY for by-value, PT_OBJECT for embedded
PID_ATTACH_FILENAME = 0x3704
PID_ATTACH_METHOD = 0x3705
PID_ATTACH_LONG_FILENAME = 0x3707
PID_ATTACH_MIME_TAG = 0x370E
PID_ATTACH_CONTENT_ID = 0x3712

# Attachment methods
ATTACH_EMBEDDED_MSG = 5

PR_ATTACH_DATA_OBJ = PropertyTag(PID_ATTACH_DATA, PT_OBJECT)
