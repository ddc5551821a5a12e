import json

import pytest

from msgparse.cli import main, sanitize_filename
from msgparse.mapi.properties import (
    PID_SUBJECT, PID_SENDER_SMTP_ADDRESS, PID_ATTACH_DATA, PID_ATTACH_LONG_FILENAME,
)

from msg_builder import bin_tag, build_msg, str_tag


@pytest.fixture
def msg_file(tmp_path):
    path = tmp_path / 'report.msg'
    path.write_bytes(build_msg(
        {str_tag(PID_SUBJECT): 'Report', str_tag(PID_SENDER_SMTP_ADDRESS): 'a@example.com'},
        attachments=[
            {str_tag(PID_ATTACH_LONG_FILENAME): '../../evil.txt', bin_tag(PID_ATTACH_DATA): b'evil'},
            {str_tag(PID_ATTACH_LONG_FILENAME): 'evil.txt', bin_tag(PID_ATTACH_DATA): b'twin'},
            {str_tag(PID_ATTACH_LONG_FILENAME): 'empty.bin'},
        ],
    ).to_bytes())
    return path


def test_single_file(msg_file, capsys):
    assert main([str(msg_file)]) == 0
    out = capsys.readouterr().out
    assert len(out.splitlines()) == 1
    document = json.loads(out)
    assert document['subject'] == 'Report'
    assert 'source' not in document


def test_pretty_and_summary(msg_file, capsys):
    assert main([str(msg_file), '--pretty', '--summary']) == 0
    captured = capsys.readouterr()
    assert json.loads(captured.out)['sender_email'] == 'a@example.com'
    assert 'subject:' in captured.err
    assert 'Report' in captured.err


def test_inline_limit_flag(msg_file, capsys):
    assert main([str(msg_file), '--inline-limit', '0']) == 0
    document = json.loads(capsys.readouterr().out)
    assert [a['data'] for a in document['attachments']] == [None, None, None]


def test_missing_input(tmp_path, capsys):
    assert main([str(tmp_path / 'absent.msg')]) == 1
    assert 'does not exist' in capsys.readouterr().err


def test_garbage_file(tmp_path, capsys):
    path = tmp_path / 'broken.msg'
    path.write_bytes(b'not a compound file')
    assert main([str(path)]) == 1
    assert json.loads(capsys.readouterr().out)['error'].startswith('FormatError')


def test_directory_scan(tmp_path, msg_file, capsys):
    nested = tmp_path / 'inbox'
    nested.mkdir()
    (nested / 'BROKEN.MSG').write_bytes(b'junk')
    (nested / 'notes.txt').write_text('ignored')

    assert main([str(tmp_path)]) == 1
    captured = capsys.readouterr()
    documents = [json.loads(line) for line in captured.out.splitlines()]
    assert {d['source'] for d in documents} == {str(msg_file), str(nested / 'BROKEN.MSG')}
    assert 'Done: 1 parsed, 1 failed' in captured.err


def test_extract_dir(msg_file, tmp_path, capsys):
    out_dir = tmp_path / 'out'
    assert main([str(msg_file), '--extract-dir', str(out_dir)]) == 0
    attachments = json.loads(capsys.readouterr().out)['attachments']

    first, second, empty = attachments
    assert first['saved_path'] == str(out_dir / 'report' / 'evil.txt')
    assert second['saved_path'] == str(out_dir / 'report' / 'evil_2.txt')
    assert 'saved_path' not in empty
    assert (out_dir / 'report' / 'evil.txt').read_bytes() == b'evil'
    assert (out_dir / 'report' / 'evil_2.txt').read_bytes() == b'twin'
    assert not (tmp_path / 'evil.txt').exists()


def test_negative_inline_limit_rejected(msg_file):
    with pytest.raises(SystemExit):
        main([str(msg_file), '--inline-limit', '-1'])


@pytest.mark.parametrize('name, expected', [
    ('report.pdf', 'report.pdf'),
    ('../../evil.txt', 'evil.txt'),
    ('C:\\Users\\x\\doc.docx', 'doc.docx'),
    ('CON.txt', '_CON.txt'),
    ('a..b...c', 'a.b.c'),
    ('bad<>:"|?*name.txt', 'badname.txt'),
    ('', 'attachment'),
    ('....', 'attachment'),
])
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected


def test_sanitize_filename_truncates():
    assert len(sanitize_filename('x' * 300 + '.txt')) == 200


def test_unexpected_failure_is_reported(msg_file, monkeypatch, capsys):
    def explode(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr('msgparse.cli.parse_msg_file', explode)
    assert main([str(msg_file)]) == 1
    assert json.loads(capsys.readouterr().out) == {'error': 'RuntimeError: boom'}
