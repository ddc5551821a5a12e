import pytest

from msgparse.messaging.addresses import (
    address_from_search_key, dedupe_addresses, split_name_address,
    is_valid_address, split_display_list,
)
from msgparse.messaging.headers import (
    decode_header_value, get_header, get_header_addresses, get_header_date,
    headers_to_map, parse_transport_headers,
)


@pytest.mark.parametrize('text, expected', [
    ('John Doe <john@example.com>', ('John Doe', 'john@example.com')),
    ('"Doe, John" <john@example.com>', ('Doe, John', 'john@example.com')),
    ('john@example.com', (None, 'john@example.com')),
    ('<john@example.com>', (None, 'john@example.com')),
    ('John Doe john@example.com', ('John Doe', 'john@example.com')),
    ('SMTP:john@example.com', (None, 'john@example.com')),
    ('John Doe', ('John Doe', None)),
    ('John <not-an-address>', ('John <not-an-address>', None)),
    ('', (None, None)),
    (None, (None, None)),
])
def test_split_name_address(text, expected):
    assert split_name_address(text) == expected


def test_exchange_dn_is_not_an_address():
    name, address = split_name_address('/O=CONTOSO/OU=EXCHANGE/CN=RECIPIENTS/CN=JDOE')
    assert address is None


@pytest.mark.parametrize('value, valid', [
    ('a@b.co', True),
    ('first.last+tag@mail.example.org', True),
    ('user@localhost', False),
    ('no-at-sign.example.com', False),
    ('two@@example.com', False),
    ('', False),
    (None, False),
])
def test_is_valid_address(value, valid):
    assert is_valid_address(value) is valid


def test_address_from_search_key():
    assert address_from_search_key(b'SMTP:JANE@EXAMPLE.COM\x00') == 'JANE@EXAMPLE.COM'
    assert address_from_search_key(b'EX:/O=CONTOSO/CN=JANE\x00') is None
    assert address_from_search_key(b'garbage') is None
    assert address_from_search_key(None) is None


def test_dedupe_keeps_first_seen_casing():
    assert dedupe_addresses(['a@x.com', 'A@X.COM', 'b@x.com']) == ['a@x.com', 'b@x.com']


def test_dedupe_drops_empty_entries():
    assert dedupe_addresses(['', None, '  ', 'Team']) == ['Team']


def test_split_display_list():
    assert split_display_list('Alice; Bob;; Carol ') == ['Alice', 'Bob', 'Carol']
    assert split_display_list(None) == []


# --- transport headers ---

HEADERS = (
    'Received: from mx1.example.com\r\n'
    'Received: from mx2.example.com\r\n'
    'From: =?utf-8?q?J=C3=BCrgen?= <juergen@example.com>\r\n'
    'To: Alice <alice@example.com>, bob@example.com\r\n'
    'Subject: =?utf-8?q?Caf=C3=A9?=\r\n'
    'Date: Tue, 02 Jan 2024 10:00:00 +0100\r\n'
    'Message-ID: <abc@example.com>\r\n'
    '\r\n'
)


def test_parse_transport_headers():
    headers = parse_transport_headers(HEADERS)
    assert get_header(headers, 'subject') == 'Café'
    assert get_header(headers, 'Message-ID') == '<abc@example.com>'
    assert get_header(headers, 'X-Missing') is None
    assert parse_transport_headers('   ') is None


def test_header_addresses():
    headers = parse_transport_headers(HEADERS)
    assert get_header_addresses(headers, 'From') == ['Jürgen <juergen@example.com>']
    assert get_header_addresses(headers, 'To') == [
        'Alice <alice@example.com>', 'bob@example.com']
    assert get_header_addresses(None, 'To') == []


def test_header_date():
    date = get_header_date(parse_transport_headers(HEADERS))
    assert date.isoformat() == '2024-01-02T10:00:00+01:00'


def test_header_date_unparseable():
    assert get_header_date(parse_transport_headers('Date: sometime\r\n\r\n')) is None


def test_headers_to_map_collects_repeats():
    mapping = headers_to_map(parse_transport_headers(HEADERS))
    assert mapping['Received'] == ['from mx1.example.com', 'from mx2.example.com']
    assert mapping['Subject'] == 'Café'


def test_decode_header_value_passthrough():
    assert decode_header_value('plain') == 'plain'
    assert decode_header_value(None) == ''


def test_decode_header_value_malformed_encoded_word():
    assert decode_header_value('=?utf-8?b?A?=') == '=?utf-8?b?A?='
    headers = parse_transport_headers('Subject: =?utf-8?b?A?=\r\nTo: =?utf-8?b?A?= <a@example.com>\r\n\r\n')
    assert get_header(headers, 'Subject') == '=?utf-8?b?A?='
    assert headers_to_map(headers)['Subject'] == '=?utf-8?b?A?='
