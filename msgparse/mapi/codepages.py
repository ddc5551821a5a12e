"""Windows code page identifiers and 8-bit string decoding.

PT_STRING8 values carry no encoding of their own. The message declares a
code page (PR_MESSAGE_CODEPAGE / PR_INTERNET_CPID); when it does not, the
encoding is guessed with charset-normalizer.
"""

import codecs
import logging
from typing import Optional

from charset_normalizer import from_bytes

from ..errors import EncodingError

logger = logging.getLogger(__name__)

# Code pages whose Python codec name is not simply "cp<N>"
_CODEPAGE_CODECS = {
    1200: 'utf-16-le',
    1201: 'utf-16-be',
    20127: 'ascii',
    20866: 'koi8-r',
    21866: 'koi8-u',
    28591: 'latin-1',
    28592: 'iso8859-2',
    28593: 'iso8859-3',
    28594: 'iso8859-4',
    28595: 'iso8859-5',
    28596: 'iso8859-6',
    28597: 'iso8859-7',
    28598: 'iso8859-8',
    28599: 'iso8859-9',
    28603: 'iso8859-13',
    28605: 'iso8859-15',
    50220: 'iso2022-jp',
    50221: 'iso2022-jp',
    50222: 'iso2022-jp',
    51932: 'euc-jp',
    51936: 'gb2312',
    51949: 'euc-kr',
    52936: 'hz',
    54936: 'gb18030',
    65000: 'utf-7',
    65001: 'utf-8',
    936: 'gbk',
    949: 'cp949',
    950: 'cp950',
}


def codec_for_codepage(codepage: Optional[int]) -> Optional[str]:
    """Map a Windows code page number to a Python codec name, or None."""
    if not codepage:
        return None
    name = _CODEPAGE_CODECS.get(codepage, f'cp{codepage}')
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.debug("no codec for code page %s", codepage)
        return None


def guess_encoding(data: bytes) -> Optional[str]:
    """Guess the encoding of data; None when nothing plausible is found."""
    if not data:
        return None
    if data.isascii():
        return 'ascii'
    best = from_bytes(data).best()
    return best.encoding if best is not None else None


def decode_string8(data: bytes, codepage: Optional[int] = None) -> str:
    """Decode an 8-bit string property strictly.

    Tries the declared code page, then a guessed one, then UTF-8.

    Raises:
        EncodingError: no candidate decodes the bytes cleanly. Callers fall
            back to lossy UTF-8.
    """
    data = data.rstrip(b'\x00')
    tried = []
    for name in _candidates(data, codepage):
        if not name or name in tried:
            continue
        tried.append(name)
        try:
            return data.decode(name)
        except (UnicodeDecodeError, LookupError):
            logger.debug("8-bit string does not decode as %s", name)
    raise EncodingError(f"8-bit string not decodable as {', '.join(tried)}")


def _candidates(data, codepage):
    """Yield codec names lazily; guessing only runs if the declared one fails."""
    yield codec_for_codepage(codepage)
    yield guess_encoding(data)
    yield 'utf-8'
