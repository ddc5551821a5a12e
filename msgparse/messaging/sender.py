"""Sender resolution.

Different .msg producers fill different subsets of the sender
properties, so the sender is taken from an ordered list of sources.
Each source returns (name, address); the first source that yields a
valid address wins. Names from sources without an address are kept and
used only if no source finds an address.
"""

import html
import logging
import re
from dataclasses import dataclass
from email.message import Message
from typing import Callable, List, NamedTuple, Optional, Tuple

from .addresses import split_name_address, address_from_search_key
from .headers import get_header_addresses
from ..mapi.decoder import PropertyTable
from ..mapi.properties import (
    PID_SENDER_SMTP_ADDRESS, PID_SENDER_EMAIL_ADDRESS,
    PID_SENT_REPRESENTING_SMTP_ADDRESS, PID_SENT_REPRESENTING_EMAIL,
    PID_SENDER_NAME, PID_SENT_REPRESENTING_NAME,
    PID_SENDER_SEARCH_KEY, PID_SENT_REPRESENTING_SEARCH_KEY,
)

logger = logging.getLogger(__name__)

_FROM_LINE_RE = re.compile(r'^[ \t>*]*From:[ \t]*([^\r\n]+)', re.IGNORECASE | re.MULTILINE)
_BLOCK_TAG_RE = re.compile(r'<\s*/?(?:br|p|div|tr|li|h[1-6])\b[^>]*>', re.IGNORECASE)
_TAG_RE = re.compile(r'<[^>]+>')

Candidate = Tuple[Optional[str], Optional[str]]

_NAME_PIDS = (PID_SENDER_NAME, PID_SENT_REPRESENTING_NAME)


@dataclass
class SenderContext:
    """Everything the sender sources may look at."""
    table: PropertyTable
    headers: Optional[Message] = None
    header_text: Optional[str] = None
    body: Optional[str] = None
    html_body: Optional[str] = None


class SenderResult(NamedTuple):
    name: Optional[str]
    address: Optional[str]
    source: Optional[str]


def _plain_name(table: PropertyTable) -> Optional[str]:
    for pid in _NAME_PIDS:
        name, _address = split_name_address(table.get_string(pid))
        if name:
            return name
    return None


def _html_to_text(markup: str) -> str:
    text = _BLOCK_TAG_RE.sub('\n', markup)
    return html.unescape(_TAG_RE.sub('', text))


def from_address_properties(ctx: SenderContext) -> Candidate:
    """(a) Dedicated sender address properties."""
    name = _plain_name(ctx.table)
    for pid in (PID_SENDER_SMTP_ADDRESS, PID_SENDER_EMAIL_ADDRESS,
                PID_SENT_REPRESENTING_SMTP_ADDRESS, PID_SENT_REPRESENTING_EMAIL):
        _name, address = split_name_address(ctx.table.get_string(pid))
        if address:
            return name, address
    return name, None


def from_name_and_search_key(ctx: SenderContext) -> Candidate:
    """(b) Sender name paired with the separately stored search key."""
    for name_pid, key_pid in ((PID_SENDER_NAME, PID_SENDER_SEARCH_KEY),
                              (PID_SENT_REPRESENTING_NAME, PID_SENT_REPRESENTING_SEARCH_KEY)):
        address = address_from_search_key(ctx.table.get_binary(key_pid))
        if address:
            name, _ = split_name_address(ctx.table.get_string(name_pid))
            return name, address
    return None, None


def from_display_string(ctx: SenderContext) -> Candidate:
    """(c) Combined "Name <address>" display strings."""
    first_name = None
    for pid in _NAME_PIDS:
        name, address = split_name_address(ctx.table.get_string(pid))
        if address:
            return name, address
        first_name = first_name or name
    return first_name, None


def from_transport_headers(ctx: SenderContext) -> Candidate:
    """(d) From: / Sender: in the transport header block."""
    first_name = None
    for header in ('From', 'Sender'):
        for entry in get_header_addresses(ctx.headers, header):
            name, address = split_name_address(entry)
            if address:
                return name, address
            first_name = first_name or name
    return first_name, None


def from_raw_content(ctx: SenderContext) -> Candidate:
    """(e) Regex scan for a From: line in any raw text we hold."""
    blobs = [ctx.header_text, ctx.body]
    if ctx.html_body:
        blobs.append(_html_to_text(ctx.html_body))
    for blob in blobs:
        if not blob:
            continue
        for match in _FROM_LINE_RE.finditer(blob):
            name, address = split_name_address(match.group(1))
            if address:
                return name, address
    return None, None


SENDER_SOURCES: List[Tuple[str, Callable[[SenderContext], Candidate]]] = [
    ('address_properties', from_address_properties),
    ('name_and_search_key', from_name_and_search_key),
    ('display_string', from_display_string),
    ('transport_headers', from_transport_headers),
    ('raw_content', from_raw_content),
]


def resolve_sender(ctx: SenderContext, sources=None) -> SenderResult:
    """Try each source in order; the first one with an address wins."""
    fallback_name = None
    for label, source in (sources or SENDER_SOURCES):
        name, address = source(ctx)
        if address:
            logger.debug("sender resolved from %s: %r <%s>", label, name, address)
            return SenderResult(name or fallback_name, address, label)
        fallback_name = fallback_name or name
    if fallback_name:
        logger.debug("sender has a name but no address: %r", fallback_name)
    else:
        logger.debug("no sender information found")
    return SenderResult(fallback_name, None, None)
