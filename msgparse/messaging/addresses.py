"""Address heuristics shared by sender and recipient resolution."""

import re
from typing import Iterable, List, Optional, Tuple

# An address is trusted only with a local part, '@' and a dotted domain
_ADDRESS_RE = re.compile(r'^[^@\s<>"]+@[^@\s<>"]+\.[^@\s<>".]+$')
_ANGLE_RE = re.compile(r'^(.*?)<([^<>]*)>\s*$')
_QUOTES = '"\''


def is_valid_address(value: Optional[str]) -> bool:
    """True for strings shaped like user@domain.tld."""
    return bool(value) and bool(_ADDRESS_RE.match(value.strip()))


def split_name_address(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a free-form sender / recipient string into (name, address).

    Handles:
        "Name <user@example.com>"  -> ("Name", "user@example.com")
        "user@example.com"         -> (None, "user@example.com")
        "Name user@example.com"    -> ("Name", "user@example.com")
        "Name only"                -> ("Name only", None)

    Address-type prefixes such as "SMTP:" are stripped from the address.
    """
    if not text:
        return None, None
    text = text.strip().strip('\x00')
    if not text:
        return None, None

    match = _ANGLE_RE.match(text)
    if match:
        name = match.group(1).strip().strip(_QUOTES).strip() or None
        address = _strip_addrtype(match.group(2).strip())
        if is_valid_address(address):
            return name, address

    if '@' in text:
        address = None
        name_parts = []
        for part in text.split():
            candidate = _strip_addrtype(part.strip('<>,;()' + _QUOTES))
            if address is None and is_valid_address(candidate):
                address = candidate
            else:
                name_parts.append(part)
        if address:
            name = ' '.join(name_parts).strip().strip(_QUOTES).strip() or None
            return name, address

    return text.strip(_QUOTES).strip() or None, None


def _strip_addrtype(value: str) -> str:
    if ':' in value and value.split(':', 1)[0].upper() in ('SMTP', 'MAILTO'):
        return value.split(':', 1)[1]
    return value


def address_from_search_key(key: Optional[bytes]) -> Optional[str]:
    """Decode a MAPI search key ("ADDRTYPE:ADDRESS\\0", ASCII) to an address."""
    if not key:
        return None
    text = key.rstrip(b'\x00').decode('ascii', errors='replace')
    if ':' not in text:
        return None
    addrtype, address = text.split(':', 1)
    if addrtype.upper() != 'SMTP' or not is_valid_address(address):
        return None
    return address.strip()


def split_display_list(value: Optional[str]) -> List[str]:
    """Split a PR_DISPLAY_TO style list ("A; B; C")."""
    if not value:
        return []
    return [part.strip() for part in value.split(';') if part.strip()]


def dedupe_addresses(entries: Iterable[Optional[str]]) -> List[str]:
    """Drop empty entries and case-insensitive duplicates, keep first seen."""
    seen = set()
    result = []
    for entry in entries:
        if not entry:
            continue
        entry = entry.strip()
        key = entry.casefold()
        if not entry or key in seen:
            continue
        seen.add(key)
        result.append(entry)
    return result
