import pytest

from ext2sim.directory import (
    ROOT_INODE,
    DirectoryError,
    DirectoryTree,
    format_listing,
    is_valid_filename,
    normalize_path,
)
from ext2sim.disk import Disk, get_bitmap_bit, set_bitmap_bit
from ext2sim.inodes import DIRECT_BLOCKS, InodeTable
from ext2sim.layout import (
    BLOCK_SIZE,
    FT_DIR,
    FT_REG_FILE,
    MAX_BLOCKS,
    DirEntry,
    FileMode,
    Superblock,
)

RESERVED_BLOCKS = 20


@pytest.fixture
def tree(tmp_path):
    image = bytearray(BLOCK_SIZE * MAX_BLOCKS)
    bitmap = bytearray(BLOCK_SIZE)
    for bit in range(RESERVED_BLOCKS):
        set_bitmap_bit(bitmap, bit)
    image[BLOCK_SIZE:2 * BLOCK_SIZE] = bitmap
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(image))
    disk = Disk(path, Superblock())
    inodes = InodeTable(disk)
    root = inodes.create_inode(int(FileMode.IFDIR) | 0o755, 0, 0)
    assert root == ROOT_INODE
    inodes.set_inode_block(root, 0, disk.allocate_block())
    result = DirectoryTree(inodes)
    result.create_dot_entries(root, root)
    yield result
    disk.close()


def _make_file(tree, name, mode=0o644):
    ino = tree.inodes.create_inode(int(FileMode.IFREG) | mode, 0, 0)
    tree.add_directory_entry(ROOT_INODE, name, ino, FT_REG_FILE)
    return ino


def test_root_resolves(tree):
    ino = tree.path_to_inode("/")
    assert ino == ROOT_INODE
    assert tree.inodes.is_directory(ino)
    dot = tree.find_directory_entry(ino, "..")
    assert dot.inode == ROOT_INODE


def test_root_path_and_empty_path(tree):
    assert tree.path_to_inode("/") == ROOT_INODE
    assert tree.path_to_inode("") == ROOT_INODE


def test_root_has_dot_entries(tree):
    names = [entry.name for entry in tree.read_directory_entries(ROOT_INODE, 64)]
    assert names == [".", ".."]


def test_create_directory_resolves_with_dot_entries(tree):
    ino = tree.create_directory("/a", 0o755, 0, 0)
    assert tree.path_to_inode("/a") == ino
    assert tree.inodes.is_directory(ino)
    entries = tree.read_directory_entries(ino, 64)
    assert [(e.name, e.inode) for e in entries] == [(".", ino), ("..", ROOT_INODE)]
    assert all(e.file_type == FT_DIR for e in entries)


def test_nested_directory_and_relative_lookup(tree):
    a = tree.create_directory("/a", 0o755, 0, 0)
    b = tree.create_directory("/a/b", 0o755, 0, 0)
    assert tree.path_to_inode("/a/b") == b
    assert tree.path_to_inode("a/b") == b
    assert tree.path_to_inode("//a//b/") == b
    assert tree.get_parent_inode("/a/b") == (a, "b")


def test_parent_link_count_grows_by_one(tree):
    before = tree.disk.read_inode(ROOT_INODE).links_count
    tree.create_directory("/a", 0o755, 0, 0)
    assert tree.disk.read_inode(ROOT_INODE).links_count == before + 1


def test_create_with_missing_parent_fails(tree):
    with pytest.raises(DirectoryError):
        tree.create_directory("/missing/x", 0o755, 0, 0)


def test_create_under_file_fails(tree):
    _make_file(tree, "f")
    with pytest.raises(DirectoryError):
        tree.create_directory("/f/x", 0o755, 0, 0)


def test_create_without_write_permission_fails(tree):
    with pytest.raises(DirectoryError):
        tree.create_directory("/a", 0o755, 1, 1)


def test_delete_directory_releases_resources(tree):
    sb = tree.disk.superblock
    free_blocks, free_inodes = sb.free_blocks_count, sb.free_inodes_count
    ino = tree.create_directory("/a", 0o755, 0, 0)
    tree.delete_directory("/a", 0, 0)
    with pytest.raises(DirectoryError):
        tree.path_to_inode("/a")
    assert get_bitmap_bit(tree.disk.inode_bitmap, ino - 1) == 0
    assert (sb.free_blocks_count, sb.free_inodes_count) == (free_blocks, free_inodes)


def test_delete_non_empty_directory_fails(tree):
    tree.create_directory("/a", 0o755, 0, 0)
    tree.create_directory("/a/b", 0o755, 0, 0)
    with pytest.raises(DirectoryError):
        tree.delete_directory("/a", 0, 0)
    assert tree.path_to_inode("/a/b") > 0


def test_delete_regular_file_as_directory_fails(tree):
    _make_file(tree, "f")
    with pytest.raises(DirectoryError):
        tree.delete_directory("/f", 0, 0)


def test_find_missing_entry_returns_none(tree):
    assert tree.find_directory_entry(ROOT_INODE, "nothing") is None


def test_find_entry_returns_child(tree):
    ino = _make_file(tree, "f")
    entry = tree.find_directory_entry(ROOT_INODE, "f")
    assert (entry.inode, entry.name, entry.file_type) == (ino, "f", FT_REG_FILE)
    assert entry.name_len == len("f")


def test_remove_missing_entry_fails(tree):
    with pytest.raises(DirectoryError):
        tree.remove_directory_entry(ROOT_INODE, "nothing")


def test_remove_entry_drops_link_and_frees_slot(tree):
    ino = _make_file(tree, "f")
    links = tree.disk.read_inode(ino).links_count
    tree.remove_directory_entry(ROOT_INODE, "f")
    assert tree.find_directory_entry(ROOT_INODE, "f") is None
    assert tree.disk.read_inode(ino).links_count == links - 1
    tree.add_directory_entry(ROOT_INODE, "g", ino, FT_REG_FILE)
    names = [e.name for e in tree.read_directory_entries(ROOT_INODE, 64)]
    assert names == [".", "..", "g"]


def test_directory_fills_up(tree):
    with pytest.raises(DirectoryError):
        for index in range(1000):
            tree.add_directory_entry(ROOT_INODE, f"n{index}", ROOT_INODE, FT_DIR)
    count = len(tree.read_directory_entries(ROOT_INODE, 1000))
    assert count == DIRECT_BLOCKS * DirEntry.PER_BLOCK


def test_read_entries_respects_limit(tree):
    tree.create_directory("/a", 0o755, 0, 0)
    entries = tree.read_directory_entries(ROOT_INODE, 1)
    assert [e.name for e in entries] == ["."]


def test_get_parent_inode_cases(tree):
    with pytest.raises(DirectoryError):
        tree.get_parent_inode("/")
    assert tree.get_parent_inode("name") == (ROOT_INODE, "name")
    assert tree.get_parent_inode("/name") == (ROOT_INODE, "name")


def test_list_directory_rows(tree):
    a = tree.create_directory("/a", 0o755, 0, 0)
    f = _make_file(tree, "f")
    rows = tree.list_directory("/", 0, 0)
    assert [row.name for row in rows] == [".", "..", "a", "f"]
    by_name = {row.name: row for row in rows}
    assert by_name["a"].inode == a
    assert by_name["a"].type_char == "d"
    assert by_name["a"].permissions == "drwxr-xr-x"
    assert by_name["f"].inode == f
    assert by_name["f"].permissions == "-rw-r--r--"
    assert by_name["f"].size == tree.inodes.get_file_size(f)


def test_list_without_read_permission_fails(tree):
    tree.create_directory("/p", 0o700, 0, 0)
    with pytest.raises(DirectoryError):
        tree.list_directory("/p", 1, 1)


def test_list_file_fails(tree):
    _make_file(tree, "f")
    with pytest.raises(DirectoryError):
        tree.list_directory("/f", 0, 0)


def test_change_directory(tree):
    ino = tree.create_directory("/a", 0o755, 0, 0)
    assert tree.change_directory("/a", 0, 0) == ino
    _make_file(tree, "f")
    with pytest.raises(DirectoryError):
        tree.change_directory("/f", 0, 0)
    with pytest.raises(DirectoryError):
        tree.change_directory("/missing", 0, 0)


def test_format_listing_layout(tree):
    tree.create_directory("/a", 0o755, 0, 0)
    rows = tree.list_directory("/", 0, 0)
    lines = format_listing("/", rows).splitlines()
    assert lines[0] == "Directory listing for: /"
    assert lines[1].split() == ["Name", "Inode", "Type", "Size", "Permissions"]
    assert lines[2] == "-" * 60
    assert len(lines) == 3 + len(rows)
    assert lines[5].split()[0] == "a"
    assert lines[5].split()[-1] == rows[2].permissions


@pytest.mark.parametrize(
    "name, valid",
    [("a", True), ("", False), ("a/b", False), ("x" * 255, True), ("x" * 256, False)],
)
def test_is_valid_filename(name, valid):
    assert is_valid_filename(name) is valid


def test_normalize_path():
    assert normalize_path("//a///b/") == "/a/b/"
    assert normalize_path("/a/b") == "/a/b"