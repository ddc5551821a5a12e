"""Parser configuration."""

from dataclasses import dataclass
from typing import Optional

DEFAULT_CONTENT_TYPE = 'application/octet-stream'
DEFAULT_INLINE_PAYLOAD_LIMIT = 1_000_000  # bytes


@dataclass(frozen=True)
class ParserOptions:
    """Options for a single parse call.

    Attributes:
        mirror_received_date: Copy the sent date into received_date when the
            message carries no delivery time.
        inline_payload_limit: Attachments up to this many bytes are base64
            encoded into the output document; larger ones get data=null.
        default_content_type: Content type for attachments that declare none.
        max_embedded_depth: How deep embedded .msg attachments are assembled.
        timeout: Seconds before the parse is abandoned between stages.
    """
    mirror_received_date: bool = True
    inline_payload_limit: int = DEFAULT_INLINE_PAYLOAD_LIMIT
    default_content_type: str = DEFAULT_CONTENT_TYPE
    max_embedded_depth: int = 3
    timeout: Optional[float] = None
