"""Output documents.

A parse produces exactly one document: the success document built from
an EmailRecord, or {"error": "..."}. Callers branch on the "error" key.
"""

import base64
import json
from datetime import datetime
from typing import Any, Dict, Optional

from .config import ParserOptions
from .record import AttachmentRecord, EmailRecord


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def attachment_document(attachment: AttachmentRecord, options: ParserOptions) -> Dict[str, Any]:
    doc = {
        'filename': attachment.filename,
        'content_type': attachment.content_type,
        'content_id': attachment.content_id,
        'is_inline': attachment.is_inline,
        'size': attachment.size,
        'data': None,
    }
    if attachment.data and attachment.size <= options.inline_payload_limit:
        doc['data'] = base64.b64encode(attachment.data).decode('ascii')
    if attachment.error:
        doc['error'] = attachment.error
    if attachment.embedded is not None:
        doc['embedded_message'] = to_document(attachment.embedded, options)
    return doc


def to_document(record: EmailRecord, options: Optional[ParserOptions] = None) -> Dict[str, Any]:
    """Success document for record."""
    options = options or ParserOptions()
    return {
        'subject': record.subject,
        'sender_name': record.sender_name,
        'sender_email': record.sender_email,
        'sent_date': _iso(record.sent_date),
        'received_date': _iso(record.received_date),
        'html_content': record.html_body,
        'text_content': record.text_body,
        'recipients': list(record.recipients),
        'cc': list(record.cc),
        'bcc': list(record.bcc),
        'message_id': record.message_id,
        'message_class': record.message_class,
        'attachments': [attachment_document(a, options) for a in record.attachments],
        'headers': dict(record.headers),
        'needs_review': record.needs_review,
        'warnings': list(record.warnings),
    }


def error_document(exc: BaseException) -> Dict[str, str]:
    """Error document for a failed parse."""
    message = str(exc)
    name = exc.__class__.__name__
    return {'error': f"{name}: {message}" if message else name}


def dumps(document: Dict[str, Any], pretty: bool = False) -> str:
    """Render a document as JSON; a single line unless pretty is set."""
    if pretty:
        return json.dumps(document, ensure_ascii=False, indent=2)
    text = json.dumps(document, ensure_ascii=False, separators=(',', ':'))
    # U+2028 / U+2029 count as line breaks for str.splitlines()
    return text.replace('\u2028', '\\u2028').replace('\u2029', '\\u2029')
