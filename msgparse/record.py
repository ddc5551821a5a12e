"""Assembled message records.

EmailRecord and AttachmentRecord are immutable once assembled; payload
bytes are owned by the AttachmentRecord until the caller takes them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class AttachmentRecord:
    """One attachment of a message."""
    filename: str
    content_type: str
    data: bytes = b''
    content_id: Optional[str] = None
    error: Optional[str] = None
    embedded: Optional['EmailRecord'] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_inline(self) -> bool:
        return bool(self.content_id)


@dataclass(frozen=True)
class EmailRecord:
    """
    A parsed .msg message.

    Sender fields are independently optional. When neither could be
    recovered the record is still valid but needs_review is set.
    """
    subject: str = ''
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
    sent_date: Optional[datetime] = None
    received_date: Optional[datetime] = None
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    message_id: Optional[str] = None
    message_class: Optional[str] = None

    recipients: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    bcc: Tuple[str, ...] = ()

    attachments: Tuple[AttachmentRecord, ...] = ()
    headers: Dict[str, Union[str, List[str]]] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    @property
    def needs_review(self) -> bool:
        return self.sender_name is None and self.sender_email is None
