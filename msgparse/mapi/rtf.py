"""PR_RTF_COMPRESSED bodies.

Outlook often stores the HTML body only as RTF with the HTML
encapsulated in it (\\fromhtml1), compressed with LZFu ([MS-OXRTFCP]).
"""

import logging
from typing import Optional

from compressed_rtf import decompress
from RTFDE.deencapsulate import DeEncapsulator
from RTFDE.exceptions import NotEncapsulatedRtf

from ..errors import PropertyDecodeError

logger = logging.getLogger(__name__)

_FROMHTML = b'\\fromhtml1'
_HEADER_SCAN = 1024


def decompress_rtf(data: bytes) -> bytes:
    """Decompress a PR_RTF_COMPRESSED value (LZFu or uncompressed MELA).

    Raises:
        PropertyDecodeError: header, CRC or compressed data is invalid.
    """
    try:
        return decompress(bytes(data))
    except Exception as e:
        raise PropertyDecodeError(f"compressed RTF unreadable: {e}") from e


def html_from_rtf(rtf: bytes) -> Optional[str]:
    """The HTML encapsulated in rtf; None for plain or text-encapsulated RTF.

    Raises:
        PropertyDecodeError: the RTF claims encapsulated HTML but cannot be parsed.
    """
    # \fromhtml1 sits in the RTF header, ahead of the font table
    if _FROMHTML not in rtf[:_HEADER_SCAN]:
        return None
    try:
        rtf_obj = DeEncapsulator(rtf)
        rtf_obj.deencapsulate()
    except NotEncapsulatedRtf:
        logger.debug("RTF body carries no encapsulated content")
        return None
    except Exception as e:
        raise PropertyDecodeError(f"encapsulated RTF unreadable: {e}") from e

    if rtf_obj.content_type != 'html':
        return None
    html = rtf_obj.html
    if isinstance(html, bytes):
        html = html.decode('utf-8', errors='replace')
    return html or None
