"""Public entry points.

Every call is self-contained: the file is read into memory once, the
container parsed from that buffer, and nothing is cached between calls,
so parses may run concurrently from several threads.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .cfb.compound_file import CompoundFile
from .config import ParserOptions
from .errors import MsgParseError
from .messaging.message import assemble_message
from .output import to_document, error_document
from .record import EmailRecord
from .utils import Deadline

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, str, Path]


def parse_msg_bytes(data: bytes, options: Optional[ParserOptions] = None,
                    cancel=None) -> EmailRecord:
    """Parse an in-memory .msg file.

    Args:
        data: The complete file contents.
        options: Parser options; defaults apply when omitted.
        cancel: Optional threading.Event; setting it abandons the parse at
            the next stage boundary.

    Raises:
        MsgParseError: for any structural failure (see msgparse.errors).
    """
    options = options or ParserOptions()
    deadline = Deadline(options.timeout, cancel)

    deadline.check('container parse')
    cf = CompoundFile.from_bytes(bytes(data))
    logger.debug("container parsed: %d sectors of %d bytes, %d directory entries",
                  cf.total_sectors, cf.sector_size, len(cf.entries))
    return assemble_message(cf, cf.root, options, deadline)


def parse_msg_file(path, options: Optional[ParserOptions] = None,
                   cancel=None) -> EmailRecord:
    """Parse a .msg file on disk. OSError propagates for unreadable paths."""
    data = Path(path).read_bytes()
    logger.debug("read %d bytes from %s", len(data), path)
    return parse_msg_bytes(data, options, cancel)


def parse_to_document(source: Source, options: Optional[ParserOptions] = None,
                      cancel=None) -> Dict[str, Any]:
    """Parse source (bytes or a path) into a success or error document.

    Never raises for parse failures; they become {"error": ...}.
    """
    options = options or ParserOptions()
    try:
        if isinstance(source, (bytes, bytearray, memoryview)):
            record = parse_msg_bytes(source, options, cancel)
        else:
            record = parse_msg_file(source, options, cancel)
    except (MsgParseError, OSError) as e:
        logger.warning("parse failed: %s", e)
        return error_document(e)
    except Exception as e:
        logger.exception("unexpected failure while parsing")
        return error_document(e)
    return to_document(record, options)
