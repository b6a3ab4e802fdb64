"""Directory entries, path resolution and directory operations."""

from __future__ import annotations

import re
from contextlib import suppress
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .disk import DiskError
from .inodes import DIRECT_BLOCKS, InodeError, InodeTable
from .layout import BLOCK_SIZE, FT_DIR, MAX_FILENAME, MAX_PATH, DirEntry, FileMode

ROOT_INODE = 1
DEFAULT_MAX_ENTRIES = 64

_REPEATED_SLASHES = re.compile(r"/{2,}")


class DirectoryError(Exception):
    """Raised when a directory or path operation fails."""


@dataclass(frozen=True)
class ListingRow:
    """One line of a directory listing."""

    name: str
    inode: int
    type_char: str
    size: int
    permissions: str


def _slots(block: bytes) -> Iterator[Tuple[int, DirEntry]]:
    """Yield (byte offset, entry) for every entry slot of a directory block."""
    for index in range(DirEntry.PER_BLOCK):
        start = index * DirEntry.SIZE
        yield start, DirEntry.unpack(block[start:start + DirEntry.SIZE])


def format_listing(path, rows) -> str:
    """Render listing rows as the table printed by ``dir``."""
    lines = [
        f"Directory listing for: {path}",
        f"{'Name':<20} {'Inode':<10} {'Type':<10} {'Size':<10} {'Permissions':<10}",
        "-" * 60,
    ]
    lines.extend(
        f"{row.name:<20} {row.inode:<10} {row.type_char:<10} {row.size:<10} {row.permissions:<10}"
        for row in rows
    )
    return "\n".join(lines) + "\n"


def is_valid_filename(name) -> bool:
    """A name is valid when it is non-empty, at most 255 bytes and has no slash."""
    if not name:
        return False
    if len(name.encode("utf-8")) > MAX_FILENAME:
        return False
    return "/" not in name and "\0" not in name


def normalize_path(path) -> str:
    """Collapse runs of slashes into one."""
    return _REPEATED_SLASHES.sub("/", path)


class DirectoryTree:
    """Directory operations over the inodes of an open disk image."""

    def __init__(self, inodes: InodeTable):
        self.inodes = inodes
        self.disk = inodes.disk

    # Helpers

    def _require_inode(self, inode_no):
        try:
            return self.disk.read_inode(inode_no)
        except DiskError as exc:
            raise DirectoryError(f"cannot read inode {inode_no}") from exc

    def _blocks(self, inode_no, strict: bool) -> Iterator[Tuple[int, bytes]]:
        """Yield (block number, data) of mapped direct blocks up to the first gap."""
        for index in range(DIRECT_BLOCKS):
            try:
                block_no = self.inodes.get_inode_block(inode_no, index)
            except (InodeError, DiskError):
                return
            if block_no == 0:
                return
            try:
                data = self.disk.read_block(block_no)
            except DiskError as exc:
                if strict:
                    raise DirectoryError(f"cannot read block {block_no}") from exc
                return
            yield block_no, data

    # Directory operations

    def create_directory(self, path, mode, uid, gid) -> int:
        """Create a directory at ``path`` and return its inode number."""
        parent, child = self.get_parent_inode(path)
        if parent == 0:
            raise DirectoryError("parent directory does not exist")
        if not self.inodes.is_directory(parent):
            raise DirectoryError("parent is not a directory")
        if not self.inodes.check_permission(parent, FileMode.IWUSR, uid, gid):
            raise DirectoryError("permission denied")
        try:
            dir_inode = self.inodes.create_inode(int(FileMode.IFDIR) | mode, uid, gid)
        except DiskError as exc:
            raise DirectoryError(f"cannot create directory {path}") from exc
        try:
            data_block = self.disk.allocate_block()
            self.disk.write_block(data_block, bytes(BLOCK_SIZE))
            self.inodes.set_inode_block(dir_inode, 0, data_block)
            self.create_dot_entries(dir_inode, parent)
            self.add_directory_entry(parent, child, dir_inode, FT_DIR)
        except (DirectoryError, InodeError, DiskError) as exc:
            with suppress(DiskError):
                self.inodes.delete_inode(dir_inode)
            raise DirectoryError(f"cannot create directory {path}") from exc
        return dir_inode

    def delete_directory(self, path, uid, gid) -> None:
        """Remove an empty directory."""
        inode_no = self.path_to_inode(path)
        if not self.inodes.is_directory(inode_no):
            raise DirectoryError(f"not a directory: {path}")
        if not self.inodes.check_permission(inode_no, FileMode.IWUSR, uid, gid):
            raise DirectoryError("permission denied")
        if len(self.read_directory_entries(inode_no, DEFAULT_MAX_ENTRIES)) > 2:
            raise DirectoryError(f"directory not empty: {path}")
        parent, child = self.get_parent_inode(path)
        self.remove_directory_entry(parent, child)
        try:
            self.inodes.delete_inode(inode_no)
        except DiskError as exc:
            raise DirectoryError(f"cannot delete directory {path}") from exc

    def list_directory(self, path, uid, gid) -> List[ListingRow]:
        """Return a row for every entry of the directory at ``path``."""
        inode_no = self.path_to_inode(path)
        if not self.inodes.is_directory(inode_no):
            raise DirectoryError(f"not a directory: {path}")
        if not self.inodes.check_permission(inode_no, FileMode.IRUSR, uid, gid):
            raise DirectoryError("permission denied")
        rows = []
        for entry in self.read_directory_entries(inode_no, DEFAULT_MAX_ENTRIES):
            try:
                inode = self.disk.read_inode(entry.inode)
            except DiskError:
                continue
            permissions = inode.permission_string()
            rows.append(ListingRow(entry.name, entry.inode, permissions[0], inode.size, permissions))
        return rows

    def change_directory(self, path, uid, gid) -> int:
        """Check that ``path`` is an enterable directory and return its inode."""
        inode_no = self.path_to_inode(path)
        if not self.inodes.is_directory(inode_no):
            raise DirectoryError(f"not a directory: {path}")
        if not self.inodes.check_permission(inode_no, FileMode.IXUSR, uid, gid):
            raise DirectoryError("permission denied")
        return inode_no

    # Directory entries

    def add_directory_entry(self, parent_inode, name, child_inode, file_type) -> None:
        """Put an entry in the first free slot, growing the directory if needed."""
        self._require_inode(parent_inode)
        for index in range(DIRECT_BLOCKS):
            try:
                block_no = self.inodes.get_inode_block(parent_inode, index)
            except (InodeError, DiskError):
                break
            try:
                if block_no == 0:
                    block_no = self.disk.allocate_block()
                    self.inodes.set_inode_block(parent_inode, index, block_no)
                    block = bytearray(BLOCK_SIZE)
                else:
                    block = bytearray(self.disk.read_block(block_no))
            except (InodeError, DiskError) as exc:
                raise DirectoryError("cannot extend directory") from exc
            for start, entry in _slots(block):
                if entry.inode != 0:
                    continue
                new_entry = DirEntry(
                    inode=child_inode,
                    rec_len=DirEntry.SIZE,
                    name_len=len(name.encode("utf-8")),
                    file_type=file_type,
                    name=name,
                )
                block[start:start + DirEntry.SIZE] = new_entry.pack()
                try:
                    self.disk.write_block(block_no, block)
                except DiskError as exc:
                    raise DirectoryError("cannot write directory block") from exc
                with suppress(DiskError):
                    self.inodes.increment_link_count(child_inode)
                return
        raise DirectoryError("no space left in directory")

    def remove_directory_entry(self, parent_inode, name) -> None:
        """Clear the entry called ``name`` and drop one link of its inode."""
        self._require_inode(parent_inode)
        for block_no, data in self._blocks(parent_inode, strict=True):
            block = bytearray(data)
            for start, entry in _slots(block):
                if entry.inode != 0 and entry.name == name:
                    block[start:start + 4] = bytes(4)
                    try:
                        self.disk.write_block(block_no, block)
                    except DiskError as exc:
                        raise DirectoryError("cannot write directory block") from exc
                    with suppress(DiskError):
                        self.inodes.decrement_link_count(entry.inode)
                    return
        raise DirectoryError(f"no such entry: {name}")

    def find_directory_entry(self, parent_inode, name) -> Optional[DirEntry]:
        """Return the entry called ``name`` in a directory, or None."""
        self._require_inode(parent_inode)
        for _, data in self._blocks(parent_inode, strict=True):
            for _, entry in _slots(data):
                if entry.inode != 0 and entry.name == name:
                    return entry
        return None

    # Paths

    def path_to_inode(self, path) -> int:
        """Resolve a path from the root directory to an inode number."""
        if path == "/":
            return ROOT_INODE
        current = ROOT_INODE
        for part in path[:MAX_PATH - 1].split("/"):
            if not part:
                continue
            entry = self.find_directory_entry(current, part)
            if entry is None:
                raise DirectoryError(f"no such file or directory: {path}")
            current = entry.inode
        return current

    def get_parent_inode(self, path) -> Tuple[int, str]:
        """Return the parent directory's inode and the last component of ``path``."""
        if path == "/":
            raise DirectoryError("the root directory has no parent")
        path = path[:MAX_PATH - 1]
        head, slash, child = path.rpartition("/")
        if not slash:
            return ROOT_INODE, path
        if not head:
            return ROOT_INODE, child
        return self.path_to_inode(head), child

    def read_directory_entries(self, inode_no, max_entries=DEFAULT_MAX_ENTRIES) -> List[DirEntry]:
        """Return up to ``max_entries`` used entries of a directory, in slot order."""
        self._require_inode(inode_no)
        entries: List[DirEntry] = []
        for _, data in self._blocks(inode_no, strict=False):
            for _, entry in _slots(data):
                if len(entries) >= max_entries:
                    return entries
                if entry.inode != 0:
                    entries.append(entry)
        return entries

    def create_dot_entries(self, dir_inode, parent_inode) -> None:
        """Add the ``.`` and ``..`` entries of a new directory."""
        self.add_directory_entry(dir_inode, ".", dir_inode, FT_DIR)
        self.add_directory_entry(dir_inode, "..", parent_inode, FT_DIR)