"""Command-line interface for msgparse."""

import argparse
import logging
import re
import sys
from pathlib import Path

from .config import ParserOptions, DEFAULT_INLINE_PAYLOAD_LIMIT
from .errors import MsgParseError
from .output import to_document, error_document, dumps
from .parser import parse_msg_file

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[^\w\s.\-()]')
_REPEATED_DOTS = re.compile(r'\.{2,}')
_RESERVED_NAMES = {
    'CON', 'PRN', 'AUX', 'NUL',
    *(f'COM{i}' for i in range(1, 10)),
    *(f'LPT{i}' for i in range(1, 10)),
}


def sanitize_filename(filename: str, fallback: str = 'attachment') -> str:
    """Reduce an attachment name to a safe single path component."""
    if not filename:
        return fallback
    filename = filename.replace('\x00', '').split('/')[-1].split('\\')[-1]
    sanitized = _UNSAFE_FILENAME_CHARS.sub('', filename)
    sanitized = _REPEATED_DOTS.sub('.', sanitized).strip('. ')
    if not sanitized:
        return fallback
    if sanitized.split('.')[0].upper() in _RESERVED_NAMES:
        sanitized = f'_{sanitized}'
    return sanitized[:200]


def _unique_path(directory: Path, name: str) -> Path:
    candidate = directory / name
    stem, suffix = candidate.stem, candidate.suffix
    counter = 2
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def _extract_attachments(record, document, source: Path, extract_dir: Path):
    """Write payloads below extract_dir/<message>/ and record saved_path."""
    target = _unique_path(extract_dir, sanitize_filename(source.stem, 'message'))
    for number, (attachment, entry) in enumerate(
            zip(record.attachments, document['attachments']), 1):
        if not attachment.data:
            continue
        target.mkdir(parents=True, exist_ok=True)
        path = _unique_path(target, sanitize_filename(attachment.filename, f'attachment_{number}'))
        path.write_bytes(attachment.data)
        entry['saved_path'] = str(path)
        logger.debug("saved %s (%d bytes)", path, attachment.size)


def _print_summary(document, source: Path):
    """Human readable field table on stderr."""
    print(f"--- {source}", file=sys.stderr)
    if 'error' in document:
        print(f"  error:       {document['error']}", file=sys.stderr)
        return
    sender = document['sender_email'] or '-'
    if document['sender_name']:
        sender = f"{document['sender_name']} <{sender}>"
    rows = [
        ('subject', document['subject'] or '(No Subject)'),
        ('from', sender),
        ('to', ', '.join(document['recipients']) or '-'),
        ('sent', document['sent_date'] or '-'),
        ('received', document['received_date'] or '-'),
        ('message-id', document['message_id'] or '-'),
        ('body', f"text={'yes' if document['text_content'] else 'no'} "
                 f"html={'yes' if document['html_content'] else 'no'}"),
    ]
    for label, value in rows:
        print(f"  {label + ':':<12} {value}", file=sys.stderr)
    for entry in document['attachments']:
        flag = ' inline' if entry['is_inline'] else ''
        error = f" ! {entry['error']}" if entry.get('error') else ''
        print(f"  attachment:  {entry['filename']} ({entry['content_type']}, "
              f"{entry['size']} bytes{flag}){error}", file=sys.stderr)
    if document['needs_review']:
        print("  ! no sender recovered, needs review", file=sys.stderr)


def _process_file(path: Path, options: ParserOptions, args, with_source: bool = False):
    """Parse one file and print its document. Returns True on success."""
    try:
        record = parse_msg_file(path, options)
    except (MsgParseError, OSError) as e:
        logger.warning("%s: %s", path, e)
        document = error_document(e)
    except Exception as e:
        logger.exception("%s: unexpected failure", path)
        document = error_document(e)
    else:
        document = to_document(record, options)
        if args.extract_dir:
            _extract_attachments(record, document, path, args.extract_dir)

    if with_source:
        document['source'] = str(path)
    print(dumps(document, pretty=args.pretty))
    if args.summary:
        _print_summary(document, path)
    return 'error' not in document


def _process_directory(input_dir: Path, options: ParserOptions, args):
    """Recursively process every .msg file below input_dir."""
    print(f"Scanning {input_dir}...", file=sys.stderr)
    files = sorted(p for p in input_dir.rglob('*') if p.is_file() and p.suffix.lower() == '.msg')
    stats = {'processed': 0, 'failed': 0}
    for path in files:
        if _process_file(path, options, args, with_source=True):
            stats['processed'] += 1
        else:
            stats['failed'] += 1
            print(f"  ! {path}", file=sys.stderr)

    print(f"\nDone: {stats['processed']} parsed, {stats['failed']} failed", file=sys.stderr)
    return stats


def build_parser():
    parser = argparse.ArgumentParser(
        prog='msgparse',
        description='Extract headers, bodies and attachments from Outlook .msg files as JSON.',
    )
    parser.add_argument(
        'input',
        type=Path,
        help='A .msg file, or a directory scanned recursively for .msg files',
    )
    parser.add_argument(
        '--extract-dir',
        type=Path,
        default=None,
        help='Write attachment payloads below this directory',
    )
    parser.add_argument(
        '--summary',
        action='store_true',
        help='Print a human readable summary to stderr',
    )
    parser.add_argument(
        '--pretty',
        action='store_true',
        help='Indent the JSON output (multi-line)',
    )
    parser.add_argument(
        '--inline-limit',
        type=int,
        default=DEFAULT_INLINE_PAYLOAD_LIMIT,
        help=f'Largest attachment inlined as base64 (default: {DEFAULT_INLINE_PAYLOAD_LIMIT})',
    )
    parser.add_argument(
        '--no-mirror-received',
        action='store_true',
        help='Leave received_date empty when the message has no delivery time',
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=None,
        help='Abandon a parse after this many seconds',
    )
    parser.add_argument(
        '--max-depth',
        type=int,
        default=3,
        help='Maximum nesting depth for embedded messages (default: 3)',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Debug logging on stderr',
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.inline_limit < 0:
        parser.error("--inline-limit must not be negative")
    if args.max_depth < 0:
        parser.error("--max-depth must not be negative")

    options = ParserOptions(
        mirror_received_date=not args.no_mirror_received,
        inline_payload_limit=args.inline_limit,
        max_embedded_depth=args.max_depth,
        timeout=args.timeout,
    )

    if args.input.is_dir():
        stats = _process_directory(args.input, options, args)
        return 1 if stats['failed'] else 0

    if not args.input.exists():
        print(f"Error: '{args.input}' does not exist", file=sys.stderr)
        return 1
    return 0 if _process_file(args.input, options, args) else 1


if __name__ == '__main__':
    sys.exit(main())
