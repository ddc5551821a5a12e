"""Recipient resolution.

Recipients normally live in __recip_version1.0_#XXXXXXXX storages. Some
producers omit them, so the transport headers and the PR_DISPLAY_TO /
PR_DISPLAY_CC summary strings are tried next. The first source that
yields anything is used.
"""

import logging
from dataclasses import dataclass, field
from email.message import Message
from typing import Callable, List, NamedTuple, Optional, Tuple

from .addresses import (
    split_name_address, is_valid_address, split_display_list, dedupe_addresses,
)
from .headers import get_header_addresses
from ..cfb.compound_file import CompoundFile
from ..cfb.directory import DirectoryEntry
from ..mapi.decoder import PropertyTable, decode_storage, subobject_storages, STORAGE_SUBOBJECT
from ..mapi.properties import (
    RECIP_PREFIX, PID_SMTP_ADDRESS, PID_EMAIL_ADDRESS, PID_DISPLAY_NAME,
    PID_RECIPIENT_TYPE, PID_DISPLAY_TO, PID_DISPLAY_CC, PID_DISPLAY_BCC,
    MAPI_TO, MAPI_CC, MAPI_BCC, RECIPIENT_TYPE_MASK,
)
from ..utils import Deadline, sanitize_text

logger = logging.getLogger(__name__)


class Recipient(NamedTuple):
    name: Optional[str]
    address: Optional[str]
    recipient_type: int = MAPI_TO

    @property
    def display(self) -> Optional[str]:
        """Address when known, otherwise the name as a placeholder."""
        return self.address or self.name


@dataclass
class RecipientContext:
    cf: CompoundFile
    storage: DirectoryEntry
    table: PropertyTable
    headers: Optional[Message] = None
    deadline: Optional[Deadline] = None
    warnings: List[str] = field(default_factory=list)


class RecipientLists(NamedTuple):
    recipients: List[str]
    cc: List[str]
    bcc: List[str]


def read_recipient(table: PropertyTable) -> Optional[Recipient]:
    """Build a Recipient from one recipient storage's properties."""
    address = None
    for pid in (PID_SMTP_ADDRESS, PID_EMAIL_ADDRESS):
        _name, candidate = split_name_address(table.get_string(pid))
        if is_valid_address(candidate):
            address = candidate
            break

    name, display_address = split_name_address(table.get_string(PID_DISPLAY_NAME))
    address = address or display_address
    if not name and not address:
        return None
    rtype = (table.get_int(PID_RECIPIENT_TYPE) or 0) & RECIPIENT_TYPE_MASK
    return Recipient(sanitize_text(name), sanitize_text(address), rtype or MAPI_TO)


def from_recipient_storages(ctx: RecipientContext) -> List[Recipient]:
    result = []
    for storage in subobject_storages(ctx.cf, ctx.storage, RECIP_PREFIX):
        if ctx.deadline is not None:
            ctx.deadline.check(f"recipient {storage.name}")
        table = decode_storage(ctx.cf, storage, STORAGE_SUBOBJECT, ctx.table.codepage)
        ctx.warnings.extend(f"{storage.name}/{w}" for w in table.warnings)
        ctx.warnings.extend(f"{storage.name}/{tag}: {message}" for tag, message in table.errors.items())
        recipient = read_recipient(table)
        if recipient is None:
            logger.debug("recipient storage %s has no name or address", storage.name)
            continue
        result.append(recipient)
    return result


def from_transport_headers(ctx: RecipientContext) -> List[Recipient]:
    result = []
    for header, rtype in (('To', MAPI_TO), ('Cc', MAPI_CC), ('Bcc', MAPI_BCC)):
        for entry in get_header_addresses(ctx.headers, header):
            name, address = split_name_address(entry)
            if name or address:
                result.append(Recipient(sanitize_text(name), sanitize_text(address), rtype))
    return result


def from_display_lists(ctx: RecipientContext) -> List[Recipient]:
    result = []
    for pid, rtype in ((PID_DISPLAY_TO, MAPI_TO), (PID_DISPLAY_CC, MAPI_CC),
                       (PID_DISPLAY_BCC, MAPI_BCC)):
        for entry in split_display_list(ctx.table.get_string(pid)):
            name, address = split_name_address(entry)
            if name or address:
                result.append(Recipient(sanitize_text(name), sanitize_text(address), rtype))
    return result


RECIPIENT_SOURCES: List[Tuple[str, Callable[[RecipientContext], List[Recipient]]]] = [
    ('recipient_storages', from_recipient_storages),
    ('transport_headers', from_transport_headers),
    ('display_lists', from_display_lists),
]


def resolve_recipients(ctx: RecipientContext, sources=None) -> RecipientLists:
    """Use the first source that yields recipients; dedupe the result."""
    found: List[Recipient] = []
    for label, source in (sources or RECIPIENT_SOURCES):
        found = source(ctx)
        if found:
            logger.debug("%d recipients from %s", len(found), label)
            break

    return RecipientLists(
        recipients=dedupe_addresses(r.display for r in found),
        cc=dedupe_addresses(r.display for r in found if r.recipient_type == MAPI_CC),
        bcc=dedupe_addresses(r.display for r in found if r.recipient_type == MAPI_BCC),
    )
