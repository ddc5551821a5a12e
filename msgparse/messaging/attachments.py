"""Attachment resolution.

Each __attach_version1.0_#XXXXXXXX storage becomes one AttachmentRecord.
A broken attachment is reported on its own record (empty payload plus
an error text) and never aborts the rest of the message.
"""

import logging
from typing import Callable, List, Optional

from ..cfb.compound_file import CompoundFile
from ..cfb.directory import DirectoryEntry
from ..config import ParserOptions
from ..errors import MsgParseError, ParseCancelledError
from ..mapi.decoder import PropertyTable, decode_storage, subobject_storages, STORAGE_SUBOBJECT
from ..mapi.properties import (
    ATTACH_PREFIX, ATTACH_EMBEDDED_MSG, PR_ATTACH_DATA_OBJ,
    PID_ATTACH_DATA, PID_ATTACH_LONG_FILENAME, PID_ATTACH_FILENAME,
    PID_DISPLAY_NAME, PID_ATTACH_MIME_TAG, PID_ATTACH_CONTENT_ID, PID_ATTACH_METHOD,
    substg_name,
)
from ..record import AttachmentRecord, EmailRecord
from ..utils import Deadline, sanitize_text

logger = logging.getLogger(__name__)

# Assembles an embedded message storage at the given depth
EmbeddedAssembler = Callable[[CompoundFile, DirectoryEntry, int], EmailRecord]


def attachment_filename(table: PropertyTable, number: int) -> str:
    """Long filename, then 8.3 filename, then display name, then a synthetic one."""
    for pid in (PID_ATTACH_LONG_FILENAME, PID_ATTACH_FILENAME, PID_DISPLAY_NAME):
        value = sanitize_text(table.get_string(pid))
        if value and value.strip():
            return value.strip()
    return f"attachment_{number}"


def attachment_content_id(table: PropertyTable) -> Optional[str]:
    value = sanitize_text(table.get_string(PID_ATTACH_CONTENT_ID))
    if not value:
        return None
    value = value.strip().strip('<>').strip()
    return value or None


def read_attachment(cf: CompoundFile, storage: DirectoryEntry, number: int,
                    codepage: Optional[int], options: ParserOptions,
                    depth: int = 0,
                    assemble_embedded: Optional[EmbeddedAssembler] = None,
                    warnings: Optional[List[str]] = None) -> AttachmentRecord:
    """Build the record for one attachment storage.

    Args:
        number: 1-based position, used for the synthetic filename.
        codepage: Code page inherited from the owning message.
        depth: Nesting depth of the owning message.
        assemble_embedded: Called for attach-method-5 attachments.
        warnings: Collects non-fatal notes for the owning message.
    """
    table = decode_storage(cf, storage, STORAGE_SUBOBJECT, codepage)
    if warnings is not None:
        warnings.extend(f"{storage.name}/{w}" for w in table.warnings)
        warnings.extend(f"{storage.name}/{tag}: {message}" for tag, message in table.errors.items())

    filename = attachment_filename(table, number)
    content_type = sanitize_text(table.get_string(PID_ATTACH_MIME_TAG)) or options.default_content_type
    content_id = attachment_content_id(table)

    error = None
    data = table.get_binary(PID_ATTACH_DATA)
    if data is None:
        data = b''
        failure = table.error_for(PID_ATTACH_DATA)
        if failure:
            error = f"payload unreadable: {failure}"
            logger.warning("attachment %r in %s: %s", filename, storage.name, error)

    embedded = None
    embedded_storage = cf.get_child(storage, substg_name(PR_ATTACH_DATA_OBJ))
    is_embedded = table.get_int(PID_ATTACH_METHOD) == ATTACH_EMBEDDED_MSG
    if embedded_storage is not None and embedded_storage.is_storage:
        if depth + 1 > options.max_embedded_depth:
            note = f"embedded message below depth {options.max_embedded_depth} not assembled"
            if warnings is not None:
                warnings.append(f"{storage.name}: {note}")
            logger.debug("%s: %s", storage.name, note)
        elif assemble_embedded is not None:
            try:
                embedded = assemble_embedded(cf, embedded_storage, depth + 1)
            except ParseCancelledError:
                raise
            except MsgParseError as e:
                error = f"embedded message unreadable: {e}"
                logger.warning("attachment %r in %s: %s", filename, storage.name, error)
    elif is_embedded:
        error = error or "embedded message storage missing"

    return AttachmentRecord(
        filename=filename,
        content_type=content_type,
        data=data,
        content_id=content_id,
        error=error,
        embedded=embedded,
    )


def resolve_attachments(cf: CompoundFile, message_storage: DirectoryEntry,
                        codepage: Optional[int], options: ParserOptions,
                        deadline: Optional[Deadline] = None, depth: int = 0,
                        assemble_embedded: Optional[EmbeddedAssembler] = None,
                        warnings: Optional[List[str]] = None) -> List[AttachmentRecord]:
    """All attachments of a message, in storage index order."""
    records = []
    for number, storage in enumerate(subobject_storages(cf, message_storage, ATTACH_PREFIX), 1):
        if deadline is not None:
            deadline.check(f"attachment {storage.name}")
        records.append(read_attachment(cf, storage, number, codepage, options, depth,
                                       assemble_embedded, warnings))
    logger.debug("%d attachments in '%s'", len(records), message_storage.name)
    return records
