"""Message assembly.

Builds an EmailRecord from a message storage: its decoded property
table, the recipient and attachment storages below it, and the
transport header block when present. Embedded .msg attachments are
assembled recursively through the same function.
"""

import codecs
import logging
import re
from typing import List, Optional

from .attachments import resolve_attachments
from .headers import parse_transport_headers, headers_to_map, get_header, get_header_date
from .recipients import RecipientContext, resolve_recipients
from .sender import SenderContext, resolve_sender
from ..cfb.compound_file import CompoundFile
from ..cfb.directory import DirectoryEntry
from ..config import ParserOptions
from ..errors import PropertyDecodeError
from ..mapi.codepages import codec_for_codepage, guess_encoding
from ..mapi.decoder import PropertyTable, decode_storage, STORAGE_MESSAGE, STORAGE_EMBEDDED
from ..mapi.properties import (
    PropertyTag, PT_BINARY, PT_UNICODE, PT_STRING8,
    PID_SUBJECT, PID_BODY, PID_HTML, PID_RTF_COMPRESSED, PID_MESSAGE_CLASS,
    PID_CLIENT_SUBMIT_TIME, PID_MESSAGE_DELIVERY_TIME, PID_INTERNET_MESSAGE_ID,
    PID_TRANSPORT_MESSAGE_HEADERS,
)
from ..mapi.rtf import decompress_rtf, html_from_rtf
from ..record import EmailRecord
from ..utils import Deadline, sanitize_text

logger = logging.getLogger(__name__)

_META_CHARSET_RE = re.compile(rb'<meta[^>]*?charset\s*=\s*["\']?\s*([A-Za-z0-9_.:\-]+)', re.IGNORECASE)


def _meta_charset(raw: bytes) -> Optional[str]:
    match = _META_CHARSET_RE.search(raw[:4096])
    if not match:
        return None
    try:
        return codecs.lookup(match.group(1).decode('ascii')).name
    except LookupError:
        return None


def decode_html(table: PropertyTable, warnings: List[str]) -> Optional[str]:
    """PR_HTML as text.

    The binary form is decoded with PR_INTERNET_CPID, then the charset
    of a <meta> declaration, then a guessed charset.
    """
    value = table.get(PID_HTML, PT_BINARY, PT_UNICODE, PT_STRING8)
    if value is None:
        return None
    if isinstance(value, str):
        return value
    raw = bytes(value).rstrip(b'\x00')
    if not raw:
        return None

    tried = []
    for name in (codec_for_codepage(table.internet_codepage), _meta_charset(raw)):
        if not name or name in tried:
            continue
        tried.append(name)
        try:
            return raw.decode(name)
        except UnicodeDecodeError:
            logger.debug("HTML body does not decode as %s", name)
    guessed = guess_encoding(raw)
    if guessed and guessed not in tried:
        try:
            return raw.decode(guessed)
        except (UnicodeDecodeError, LookupError):
            logger.debug("HTML body does not decode as guessed %s", guessed)
    warnings.append("html body: no charset decodes cleanly; decoded lossily")
    return raw.decode('utf-8', errors='replace')


def decode_rtf_html(table: PropertyTable, warnings: List[str]) -> Optional[str]:
    """HTML encapsulated in PR_RTF_COMPRESSED, for messages without PR_HTML."""
    compressed = table.get_binary(PID_RTF_COMPRESSED)
    if not compressed:
        return None
    try:
        return html_from_rtf(decompress_rtf(compressed))
    except PropertyDecodeError as e:
        logger.warning("RTF body: %s", e)
        warnings.append(f"{PropertyTag(PID_RTF_COMPRESSED, PT_BINARY)}: {e}")
        return None


def assemble_message(cf: CompoundFile, storage: DirectoryEntry,
                     options: Optional[ParserOptions] = None,
                     deadline: Optional[Deadline] = None,
                     depth: int = 0,
                     kind: str = STORAGE_MESSAGE,
                     codepage: Optional[int] = None) -> EmailRecord:
    """Assemble the EmailRecord for a message storage.

    Args:
        cf: The open compound file.
        storage: The root entry, or an embedded message storage.
        options: Parser options; defaults apply when omitted.
        deadline: Checked before each stage and each substorage.
        depth: Embedding depth (0 for the top-level message).
        kind: STORAGE_MESSAGE or STORAGE_EMBEDDED.
        codepage: Code page inherited from an enclosing message.

    Raises:
        CorruptStructureError: for structural damage outside property streams.
        ParseCancelledError: when the deadline expires.
    """
    options = options or ParserOptions()
    deadline = deadline or Deadline(options.timeout)

    deadline.check('property decode')
    logger.debug("decoding properties of '%s' (depth %d)", storage.name, depth)
    table = decode_storage(cf, storage, kind, codepage)
    warnings = list(table.warnings)
    warnings.extend(f"{tag}: {message}" for tag, message in table.errors.items())

    deadline.check('assembly')
    header_text = table.get_string(PID_TRANSPORT_MESSAGE_HEADERS)
    headers = parse_transport_headers(header_text)
    text_body = table.get_string(PID_BODY)
    html_body = decode_html(table, warnings)
    if html_body is None:
        html_body = decode_rtf_html(table, warnings)

    sender = resolve_sender(SenderContext(
        table=table, headers=headers, header_text=header_text,
        body=text_body, html_body=html_body))

    recipient_ctx = RecipientContext(cf, storage, table, headers, deadline)
    recipients = resolve_recipients(recipient_ctx)
    warnings.extend(recipient_ctx.warnings)

    sent_date = table.get_time(PID_CLIENT_SUBMIT_TIME) or get_header_date(headers)
    received_date = table.get_time(PID_MESSAGE_DELIVERY_TIME)
    if received_date is None and options.mirror_received_date:
        received_date = sent_date

    message_id = table.get_string(PID_INTERNET_MESSAGE_ID) or get_header(headers, 'Message-ID')
    subject = table.get_string(PID_SUBJECT) or get_header(headers, 'Subject') or ''

    def assemble_embedded(cf_, embedded_storage, embedded_depth):
        return assemble_message(cf_, embedded_storage, options, deadline,
                                embedded_depth, STORAGE_EMBEDDED, table.codepage)

    attachments = resolve_attachments(cf, storage, table.codepage, options, deadline,
                                      depth, assemble_embedded, warnings)

    header_map = {}
    for name, value in headers_to_map(headers).items():
        if isinstance(value, list):
            header_map[name] = [sanitize_text(v) for v in value]
        else:
            header_map[name] = sanitize_text(value)

    if sender.address is None and sender.name is None:
        logger.info("no sender recovered for '%s'; flagged for review", storage.name)

    return EmailRecord(
        subject=sanitize_text(subject),
        sender_name=sanitize_text(sender.name),
        sender_email=sanitize_text(sender.address),
        sent_date=sent_date,
        received_date=received_date,
        text_body=sanitize_text(text_body),
        html_body=sanitize_text(html_body),
        message_id=sanitize_text(message_id.strip()) if message_id else None,
        message_class=sanitize_text(table.get_string(PID_MESSAGE_CLASS)),
        recipients=tuple(recipients.recipients),
        cc=tuple(recipients.cc),
        bcc=tuple(recipients.bcc),
        attachments=tuple(attachments),
        headers=header_map,
        warnings=tuple(sanitize_text(w) for w in warnings),
    )
