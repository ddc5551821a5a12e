"""Exception taxonomy for .msg parsing.

Structural errors (FormatError, CorruptStructureError, TruncatedError)
abort the whole parse. PropertyDecodeError and EncodingError are raised
inside the property decoder and absorbed there.
"""


class MsgParseError(Exception):
    """Base class for every error raised while parsing a .msg file."""


class FormatError(MsgParseError):
    """The input is not a compound file at all."""


class CorruptStructureError(MsgParseError):
    """FAT, mini-FAT or directory structures are inconsistent."""


class TruncatedError(CorruptStructureError):
    """A declared structure extends past the end of the buffer."""


class PropertyDecodeError(MsgParseError):
    """A single property stream could not be decoded."""


class EncodingError(MsgParseError):
    """A string property could not be decoded with its code page."""


class ParseCancelledError(MsgParseError):
    """The caller's deadline expired or cancellation was requested."""
