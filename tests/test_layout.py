import pytest

from ext2sim.layout import (
    BLOCK_SIZE,
    EXT2_MAGIC,
    FILE_TYPE_MASK,
    MAX_BLOCKS,
    MAX_FILENAME,
    MAX_INODES,
    DirEntry,
    FileMode,
    Inode,
    Superblock,
)


def test_superblock_round_trip():
    sb = Superblock(
        inodes_count=MAX_INODES,
        blocks_count=MAX_BLOCKS,
        free_blocks_count=MAX_BLOCKS - 10,
        magic=EXT2_MAGIC,
        uuid=bytes(range(16)),
        volume_name="EXT2FS",
        last_mounted="/",
        journal_uuid=(1, 2, 3, 4),
    )
    data = sb.pack()
    assert len(data) == Superblock.SIZE
    assert Superblock.unpack(data) == sb


def test_superblock_magic_is_little_endian_at_fixed_offset():
    data = Superblock(magic=EXT2_MAGIC).pack()
    assert data[56:58] == b"\x53\xef"


def test_superblock_unpack_reads_from_a_whole_block():
    sb = Superblock(magic=EXT2_MAGIC, first_ino=11)
    block = sb.pack() + bytes(BLOCK_SIZE - Superblock.SIZE)
    assert Superblock.unpack(block) == sb


def test_superblock_unpack_short_data_raises():
    with pytest.raises(ValueError):
        Superblock.unpack(b"\x00" * (Superblock.SIZE - 1))


def test_inode_size_and_round_trip():
    assert Inode.SIZE == 96
    inode = Inode(mode=FileMode.IFREG | 0o644, uid=1, gid=1, size=5000, links_count=1)
    inode.block[0] = 11
    inode.block[12] = 42
    assert Inode.unpack(inode.pack()) == inode
    assert Inode.PER_BLOCK * Inode.SIZE <= BLOCK_SIZE


def test_inode_pack_rejects_wrong_pointer_count():
    with pytest.raises(ValueError):
        Inode(block=[0] * 3).pack()


def test_inode_unpack_short_data_raises():
    with pytest.raises(ValueError):
        Inode.unpack(b"\x00" * 10)


def test_inode_type_checks():
    directory = Inode(mode=FileMode.IFDIR | 0o755)
    regular = Inode(mode=FileMode.IFREG | 0o644)
    assert directory.is_directory() and not directory.is_regular_file()
    assert regular.is_regular_file() and not regular.is_directory()
    assert (directory.mode & FILE_TYPE_MASK) == FileMode.IFDIR


def test_permission_string_for_directory():
    assert Inode(mode=FileMode.IFDIR | 0o755).permission_string() == "drwxr-xr-x"


def test_permission_string_kinds_and_empty_bits():
    regular = Inode(mode=FileMode.IFREG).permission_string()
    other = Inode(mode=FileMode.IFIFO | 0o777).permission_string()
    assert regular[0] == "-"
    assert regular[1:] == "-" * 9
    assert other[0] == "?"
    assert len(other) == len(regular)
    assert "-" not in other[1:]


def test_dir_entry_round_trip():
    entry = DirEntry(inode=7, rec_len=DirEntry.SIZE, name_len=5, file_type=1, name="notes")
    data = entry.pack()
    assert len(data) == DirEntry.SIZE
    assert DirEntry.unpack(data) == entry


def test_dir_entry_name_is_truncated_to_field():
    entry = DirEntry(inode=1, name="a" * 300)
    parsed = DirEntry.unpack(entry.pack())
    assert parsed.name == "a" * (MAX_FILENAME - 1)


def test_dir_entries_fit_in_block():
    assert DirEntry.PER_BLOCK >= 1
    assert DirEntry.PER_BLOCK * DirEntry.SIZE <= BLOCK_SIZE
    empty = DirEntry.unpack(bytes(DirEntry.SIZE))
    assert empty.inode == 0
    assert empty.name == ""