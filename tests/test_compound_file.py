import struct

import pytest

from msgparse.cfb.compound_file import CompoundFile
from msgparse.cfb.fat import follow_chain
from msgparse.cfb.header import MAGIC, ENDOFCHAIN, FATSECT, FREESECT, parse_header
from msgparse.errors import CorruptStructureError, FormatError, TruncatedError

from msg_builder import build_compound_file


def _tree():
    return {
        'small': b'a' * 300,
        'big': bytes(range(256)) * 20,
        'folder': {
            'inner': b'inner stream',
            'empty': b'',
        },
    }


def test_reads_mini_and_regular_streams():
    built = build_compound_file(_tree())
    cf = CompoundFile.from_bytes(built.to_bytes())

    assert built.is_mini('small')
    assert not built.is_mini('big')
    assert cf.read_stream(cf.find('small')) == b'a' * 300
    assert cf.read_stream(cf.find('big')) == bytes(range(256)) * 20
    assert cf.read_stream(cf.find('folder/inner')) == b'inner stream'
    assert cf.read_stream(cf.find('folder/empty')) == b''


def test_version_4_sectors():
    cf = CompoundFile.from_bytes(build_compound_file(_tree(), sector_shift=12).to_bytes())
    assert cf.sector_size == 4096
    assert cf.header.major_version == 4
    assert cf.read_stream(cf.find('big')) == bytes(range(256)) * 20


def test_child_lookup_is_case_insensitive():
    cf = CompoundFile.from_bytes(build_compound_file(_tree()).to_bytes())
    folder = cf.get_child(cf.root, 'FOLDER')
    assert folder is not None and folder.is_storage
    assert (cf.root.type_name, folder.type_name) == ('root', 'storage')
    assert cf.get_child(folder, 'Inner').name == 'inner'
    assert cf.find('folder/missing') is None
    assert cf.find('small/below-a-stream') is None


def test_children_keep_directory_order():
    cf = CompoundFile.from_bytes(build_compound_file(_tree()).to_bytes())
    assert [e.name for e in cf.iter_children(cf.root)] == ['small', 'big', 'folder']
    assert [path for path, _ in cf.walk()] == [
        'small', 'big', 'folder', 'folder/inner', 'folder/empty']


def test_parent_links():
    cf = CompoundFile.from_bytes(build_compound_file(_tree()).to_bytes())
    inner = cf.find('folder/inner')
    assert cf.entry(inner.parent).name == 'folder'


def test_read_stream_returns_a_copy():
    data = build_compound_file(_tree()).to_bytes()
    cf = CompoundFile.from_bytes(data)
    content = cf.read_stream(cf.find('big'))
    assert isinstance(content, bytes)
    assert content is not data


def test_reading_a_storage_is_an_error():
    cf = CompoundFile.from_bytes(build_compound_file(_tree()).to_bytes())
    with pytest.raises(CorruptStructureError):
        cf.read_stream(cf.find('folder'))


# --- header validation ---

def test_bad_magic():
    with pytest.raises(FormatError):
        CompoundFile.from_bytes(b'PK\x03\x04' + b'\x00' * 1020)


def test_empty_input():
    with pytest.raises(FormatError):
        CompoundFile.from_bytes(b'')


def test_short_header():
    with pytest.raises(TruncatedError):
        CompoundFile.from_bytes(MAGIC + b'\x00' * 100)


def test_bad_byte_order():
    built = build_compound_file(_tree())
    built.set_header_field(28, '<H', 0xFEFF)
    with pytest.raises(FormatError):
        CompoundFile.from_bytes(built.to_bytes())


def test_bad_sector_shift():
    built = build_compound_file(_tree())
    built.set_header_field(30, '<H', 10)
    with pytest.raises(FormatError):
        CompoundFile.from_bytes(built.to_bytes())


def test_mini_sector_shift_must_be_smaller():
    built = build_compound_file(_tree())
    built.set_header_field(32, '<H', 9)
    with pytest.raises(FormatError):
        CompoundFile.from_bytes(built.to_bytes())


def test_header_round_trips_through_parse():
    data = build_compound_file(_tree()).to_bytes()
    header = parse_header(data)
    assert header.sector_size == 512
    assert header.mini_sector_size == 64
    assert header.mini_stream_cutoff == 4096
    assert header.num_fat_sectors == len(header.difat) == 1


def test_truncated_file():
    data = build_compound_file(_tree()).to_bytes()
    with pytest.raises(TruncatedError):
        CompoundFile.from_bytes(data[:-100])


def test_truncation_is_a_structure_error():
    data = build_compound_file(_tree()).to_bytes()
    with pytest.raises(CorruptStructureError):
        CompoundFile.from_bytes(data[:-100])


# --- chain damage ---

def test_fat_cycle_is_detected():
    built = build_compound_file(_tree())
    sectors = built.stream_sectors('big')
    built.set_fat_entry(sectors[3], sectors[1])
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError, match='loops'):
        cf.read_stream(cf.find('big'))


def test_fat_self_loop_is_detected():
    built = build_compound_file(_tree())
    first = built.stream_sectors('big')[0]
    built.set_fat_entry(first, first)
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError):
        cf.read_stream(cf.find('big'))


def test_minifat_cycle_is_detected():
    built = build_compound_file(_tree())
    sectors = built.stream_sectors('small')
    built.set_minifat_entry(sectors[2], sectors[0])
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError, match='loops'):
        cf.read_stream(cf.find('small'))


def test_chain_into_special_sector():
    built = build_compound_file(_tree())
    sectors = built.stream_sectors('small')
    built.set_minifat_entry(sectors[1], FATSECT)
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError):
        cf.read_stream(cf.find('small'))


def test_chain_ends_before_declared_size():
    built = build_compound_file(_tree())
    built.patch_entry('small', 'size', 1000)
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError, match='ends after'):
        cf.read_stream(cf.find('small'))


def test_stream_without_start_sector():
    built = build_compound_file(_tree())
    built.patch_entry('folder/inner', 'start', ENDOFCHAIN)
    cf = CompoundFile.from_bytes(built.to_bytes())
    with pytest.raises(CorruptStructureError):
        cf.read_stream(cf.find('folder/inner'))


def test_damaged_stream_does_not_affect_siblings():
    built = build_compound_file(_tree())
    built.patch_entry('small', 'start', ENDOFCHAIN)
    cf = CompoundFile.from_bytes(built.to_bytes())
    assert cf.read_stream(cf.find('folder/inner')) == b'inner stream'


def test_follow_chain_is_capped_by_table_length():
    table = [1, 2, 0]
    with pytest.raises(CorruptStructureError):
        follow_chain(table, 0)


def test_version_3_ignores_high_size_bits():
    built = build_compound_file(_tree())
    built.patch_entry('small', 'size', (1 << 32) | 300)
    cf = CompoundFile.from_bytes(built.to_bytes())
    assert cf.read_stream(cf.find('small')) == b'a' * 300


# --- directory damage ---

def test_directory_cycle():
    built = build_compound_file({'a': b'1', 'b': b'2'})
    built.patch_entry('b', 'right', built.entry_index('a'))
    with pytest.raises(CorruptStructureError, match='more than once'):
        CompoundFile.from_bytes(built.to_bytes())


def test_directory_self_reference():
    built = build_compound_file({'a': b'1'})
    built.patch_entry('a', 'left', built.entry_index('a'))
    with pytest.raises(CorruptStructureError):
        CompoundFile.from_bytes(built.to_bytes())


def test_dangling_directory_link():
    built = build_compound_file({'a': b'1'})
    built.patch_entry('a', 'right', 5000)
    with pytest.raises(CorruptStructureError, match='missing entry'):
        CompoundFile.from_bytes(built.to_bytes())


def test_duplicate_names_differing_in_case():
    built = build_compound_file({'Name': b'1', 'NAME': b'2'})
    with pytest.raises(CorruptStructureError, match='duplicate'):
        CompoundFile.from_bytes(built.to_bytes())


def test_same_name_in_different_storages_is_fine():
    cf = CompoundFile.from_bytes(build_compound_file({
        'x': {'data': b'1'},
        'y': {'data': b'2'},
    }).to_bytes())
    assert cf.read_stream(cf.find('x/data')) == b'1'
    assert cf.read_stream(cf.find('y/data')) == b'2'


# --- DIFAT ---

def test_difat_overflow_chain():
    payload = b'\xAB' * (512 * 14200)
    built = build_compound_file({'huge': payload})
    assert built.difat_sectors, "layout should need DIFAT sectors"

    cf = CompoundFile.from_bytes(built.to_bytes())
    assert cf.header.num_fat_sectors > 109
    assert cf.read_stream(cf.find('huge')) == payload


def test_difat_loop_is_detected():
    payload = b'\xAB' * (512 * 14200)
    built = build_compound_file({'huge': payload})
    first = built.difat_sectors[0]
    per_sector = built.sector_size // 4
    # No FAT ids in the DIFAT sector, and its next pointer back to itself
    struct.pack_into(f'<{per_sector}I', built.data, (first + 1) * built.sector_size,
                     *([FREESECT] * (per_sector - 1) + [first]))
    with pytest.raises(CorruptStructureError, match='loops'):
        CompoundFile.from_bytes(built.to_bytes())
