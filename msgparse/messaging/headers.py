"""Transport message headers (PR_TRANSPORT_MESSAGE_HEADERS).

Messages that passed through SMTP keep the original RFC 5322 header
block as a string property. It is parsed with the standard library's
header parser, the same way .eml input is handled elsewhere.
"""

import email.errors
import email.policy
import email.utils
import logging
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.parser import HeaderParser
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

HeaderMap = Dict[str, Union[str, List[str]]]


def parse_transport_headers(text: Optional[str]) -> Optional[Message]:
    """Parse a raw header block; None when there is nothing to parse."""
    if not text or not text.strip():
        return None
    return HeaderParser(policy=email.policy.compat32).parsestr(text, headersonly=True)


def decode_header_value(value) -> str:
    """Decode RFC 2047 encoded words; fall back to the raw value."""
    if value is None:
        return ''
    try:
        return str(make_header(decode_header(str(value))))
    except (email.errors.HeaderParseError, LookupError, UnicodeDecodeError,
            ValueError, TypeError) as e:
        logger.debug("undecodable header value %r: %s", value, e)
        return str(value)


def headers_to_map(headers: Optional[Message]) -> HeaderMap:
    """Flatten headers to name -> value; repeated names collect into a list."""
    result: HeaderMap = {}
    if headers is None:
        return result
    for name, value in headers.items():
        decoded = ' '.join(decode_header_value(value).split())
        if name in result:
            existing = result[name]
            if isinstance(existing, list):
                existing.append(decoded)
            else:
                result[name] = [existing, decoded]
        else:
            result[name] = decoded
    return result


def get_header(headers: Optional[Message], name: str) -> Optional[str]:
    """First value of header name, decoded and unfolded, or None."""
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        return None
    decoded = ' '.join(decode_header_value(value).split())
    return decoded or None


def get_header_addresses(headers: Optional[Message], *names: str) -> List[str]:
    """All 'Name <addr>' entries from the given address headers."""
    if headers is None:
        return []
    raw = []
    for name in names:
        raw.extend(headers.get_all(name) or [])
    entries = []
    for display, address in email.utils.getaddresses([decode_header_value(v) for v in raw]):
        if address and display:
            entries.append(f"{display} <{address}>")
        elif address or display:
            entries.append(address or display)
    return entries


def get_header_date(headers: Optional[Message]) -> Optional[datetime]:
    """The Date header as an aware datetime (UTC when no offset is given)."""
    value = get_header(headers, 'Date')
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as e:
        logger.debug("unparseable Date header %r: %s", value, e)
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
