"""Mounted filesystem state and the operations behind each shell command."""

from __future__ import annotations

import os
import time
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .directory import DirectoryError, DirectoryTree, format_listing
from .disk import (
    BLOCK_BITMAP_BLOCK,
    INODE_BITMAP_BLOCK,
    SUPERBLOCK_BLOCK,
    Disk,
    DiskError,
    set_bitmap_bit,
)
from .inodes import InodeError, InodeTable
from .layout import (
    BLOCK_SIZE,
    EXT2_MAGIC,
    FT_DIR,
    FT_REG_FILE,
    MAX_BLOCKS,
    MAX_INODES,
    MAX_OPEN_FILES,
    DirEntry,
    FileMode,
    Inode,
    Superblock,
)
from .users import User, UserError, UserTable

O_RDONLY = 0
O_WRONLY = 1
O_RDWR = 2
_ACCMODE = 3

FIRST_FD = 3
RESERVED_BLOCKS = 10
DIRECTORY_MODE = 0o755
FILE_MODE = 0o644

_U32 = 0xFFFFFFFF
_FS_ERRORS = (DirectoryError, InodeError, DiskError)


class FsError(Exception):
    """Raised when a filesystem command fails; the message says why."""


@dataclass
class OpenFile:
    """An entry of the open file table."""

    fd: int
    inode_no: int
    flags: int
    offset: int = 0

    @property
    def readable(self) -> bool:
        return self.flags & _ACCMODE != O_WRONLY

    @property
    def writable(self) -> bool:
        return self.flags & _ACCMODE != O_RDONLY


def _new_superblock() -> Superblock:
    now = int(time.time()) & _U32
    return Superblock(
        inodes_count=MAX_INODES,
        blocks_count=MAX_BLOCKS,
        r_blocks_count=RESERVED_BLOCKS,
        free_blocks_count=MAX_BLOCKS - RESERVED_BLOCKS,
        free_inodes_count=MAX_INODES - 1,
        first_data_block=1,
        log_block_size=0,
        log_frag_size=0,
        blocks_per_group=MAX_BLOCKS,
        frags_per_group=MAX_BLOCKS,
        inodes_per_group=MAX_INODES,
        mtime=now,
        wtime=now,
        mnt_count=0,
        max_mnt_count=20,
        magic=EXT2_MAGIC,
        state=1,
        errors=1,
        minor_rev_level=0,
        lastcheck=now,
        checkinterval=1800,
        creator_os=0,
        rev_level=0,
        first_ino=11,
        inode_size=Inode.SIZE,
    )


def _write_zero_image(path) -> None:
    try:
        with open(path, "wb") as image:
            image.write(bytes(BLOCK_SIZE * MAX_BLOCKS))
    except OSError as exc:
        raise FsError("Cannot create disk image") from exc


def _write_at(path, offset: int, data: bytes, failure: str) -> None:
    try:
        with open(path, "r+b") as image:
            image.seek(offset)
            image.write(data)
    except OSError as exc:
        raise FsError(failure) from exc


def write_blank_image(path) -> Superblock:
    """Create a zeroed image holding only a superblock, and return it."""
    path = os.fspath(path)
    _write_zero_image(path)
    superblock = _new_superblock()
    _write_at(path, 0, superblock.pack(), "Cannot write superblock")
    return superblock


def format_image(path) -> Superblock:
    """Create a complete image with bitmaps and a root directory; return its superblock."""
    path = os.fspath(path)
    _write_zero_image(path)

    superblock = _new_superblock()
    superblock.uuid = os.urandom(16)
    superblock.volume_name = "EXT2FS"
    superblock.last_mounted = "/"
    _write_at(path, 0, superblock.pack(), "Cannot write superblock")

    block_bitmap = bytearray(BLOCK_SIZE)
    for bit in range(RESERVED_BLOCKS):
        set_bitmap_bit(block_bitmap, bit)
    # Inode numbers map to bit (n - 1), so the root directory takes inode 1.
    inode_bitmap = bytearray(BLOCK_SIZE)
    _write_at(path, BLOCK_BITMAP_BLOCK * BLOCK_SIZE, bytes(block_bitmap), "Cannot write bitmaps")
    _write_at(path, INODE_BITMAP_BLOCK * BLOCK_SIZE, bytes(inode_bitmap), "Cannot write bitmaps")

    try:
        disk = Disk(path, replace(superblock))
    except DiskError as exc:
        raise FsError("Failed to initialize disk image") from exc
    with disk:
        inodes = InodeTable(disk)
        try:
            root = inodes.create_inode(int(FileMode.IFDIR) | DIRECTORY_MODE, 0, 0)
        except DiskError as exc:
            raise FsError("Failed to create root directory inode") from exc
        try:
            root_block = disk.allocate_block()
        except DiskError as exc:
            with suppress(DiskError):
                inodes.delete_inode(root)
            raise FsError("Failed to allocate root directory block") from exc
        try:
            inodes.set_inode_block(root, 0, root_block)
            entries = (
                DirEntry(root, DirEntry.SIZE, 1, FT_DIR, "."),
                DirEntry(root, DirEntry.SIZE, 2, FT_DIR, ".."),
            )
            disk.write_block(root_block, b"".join(entry.pack() for entry in entries))
        except (InodeError, DiskError) as exc:
            raise FsError("Failed to create root directory") from exc
    return superblock


class FileSystem:
    """The simulator state: users, the mounted image and the open file table."""

    def __init__(self):
        self.accounts = UserTable()
        self.superblock = Superblock()
        self.disk_image = ""
        self.next_fd = FIRST_FD
        self._open_files: Dict[int, OpenFile] = {}
        self._disk: Optional[Disk] = None
        self._inodes: Optional[InodeTable] = None
        self._tree: Optional[DirectoryTree] = None

    # Internal helpers

    @property
    def mounted(self) -> bool:
        return self._disk is not None

    @property
    def open_files(self) -> list:
        return list(self._open_files.values())

    def _require_login(self) -> None:
        if not self.accounts.is_logged_in():
            raise FsError("Not logged in")

    def _require_tree(self) -> DirectoryTree:
        if self._tree is None:
            raise FsError("No disk image mounted")
        return self._tree

    def _ids(self) -> tuple:
        return self.accounts.current_uid(), self.accounts.current_gid()

    def _lookup(self, path) -> int:
        try:
            return self._require_tree().path_to_inode(path)
        except _FS_ERRORS as exc:
            raise FsError("File not found") from exc

    def _handle(self, fd) -> OpenFile:
        handle = self._open_files.get(fd)
        if handle is None:
            raise FsError("Invalid file descriptor")
        return handle

    def _close_disk(self) -> None:
        if self._disk is not None:
            self._disk.close()
        self._disk = None
        self._inodes = None
        self._tree = None

    # Filesystem management

    def format(self, disk_image) -> Superblock:
        """Write a zeroed image that holds only a fresh superblock."""
        return write_blank_image(disk_image)

    def mount(self, disk_image) -> Superblock:
        """Open an image, check its superblock and make it the current filesystem."""
        self._close_disk()
        try:
            disk = Disk(disk_image)
        except DiskError as exc:
            raise FsError("Failed to mount disk image") from exc
        try:
            superblock = Superblock.unpack(disk.read_block(SUPERBLOCK_BLOCK))
        except DiskError as exc:
            disk.close()
            raise FsError("Failed to read superblock") from exc
        self.superblock = superblock
        if superblock.magic != EXT2_MAGIC:
            disk.close()
            raise FsError("Invalid file system magic number")
        disk.superblock = superblock
        self._disk = disk
        self._inodes = InodeTable(disk)
        self._tree = DirectoryTree(self._inodes)
        self.disk_image = os.fspath(disk_image)
        return superblock

    def umount(self) -> None:
        self._close_disk()

    def status(self) -> str:
        lines = [
            "File System Status:",
            f"Disk image: {self.disk_image}",
            f"Total blocks: {self.superblock.blocks_count}",
            f"Free blocks: {self.superblock.free_blocks_count}",
            f"Total inodes: {self.superblock.inodes_count}",
            f"Free inodes: {self.superblock.free_inodes_count}",
            f"Current user: {self.accounts.current_username()}",
            f"Open files: {len(self._open_files)}",
        ]
        return "\n".join(lines) + "\n"

    # Users

    def login(self, username, password) -> User:
        try:
            return self.accounts.login(username, password)
        except UserError as exc:
            raise FsError("Login failed") from exc

    def logout(self) -> Optional[User]:
        """Log out and return the user who was logged in, if any."""
        return self.accounts.logout()

    def users(self) -> str:
        self._require_login()
        return self.accounts.format_users()

    # Files

    def create(self, path) -> int:
        """Create an empty regular file and return its inode number."""
        self._require_login()
        tree = self._require_tree()
        inodes = tree.inodes
        uid, gid = self._ids()
        try:
            parent, child = tree.get_parent_inode(path)
        except _FS_ERRORS as exc:
            raise FsError("Invalid path") from exc
        if parent == 0:
            raise FsError("Parent directory does not exist")
        if not inodes.is_directory(parent):
            raise FsError("Parent is not a directory")
        if not inodes.check_permission(parent, FileMode.IWUSR, uid, gid):
            raise FsError("Permission denied")
        try:
            file_inode = inodes.create_inode(int(FileMode.IFREG) | FILE_MODE, uid, gid)
        except DiskError as exc:
            raise FsError("Failed to create file") from exc
        try:
            tree.add_directory_entry(parent, child, file_inode, FT_REG_FILE)
        except _FS_ERRORS as exc:
            with suppress(DiskError):
                inodes.delete_inode(file_inode)
            raise FsError("Failed to add directory entry") from exc
        return file_inode

    def delete(self, path) -> None:
        self._require_login()
        tree = self._require_tree()
        inodes = tree.inodes
        inode_no = self._lookup(path)
        if inodes.is_directory(inode_no):
            raise FsError("Cannot delete directory with delete command")
        if not inodes.check_permission(inode_no, FileMode.IWUSR, *self._ids()):
            raise FsError("Permission denied")
        try:
            parent, child = tree.get_parent_inode(path)
        except _FS_ERRORS as exc:
            raise FsError("Invalid path") from exc
        try:
            tree.remove_directory_entry(parent, child)
        except _FS_ERRORS as exc:
            raise FsError("Failed to remove directory entry") from exc
        try:
            inodes.delete_inode(inode_no)
        except DiskError as exc:
            raise FsError("Failed to delete file") from exc

    def open(self, path, flags) -> int:
        """Open a regular file and return its descriptor."""
        self._require_login()
        inodes = self._require_tree().inodes
        inode_no = self._lookup(path)
        if not inodes.is_regular_file(inode_no):
            raise FsError("Not a regular file")
        handle = OpenFile(fd=0, inode_no=inode_no, flags=flags)
        access = 0
        if handle.readable:
            access |= FileMode.IRUSR
        if handle.writable:
            access |= FileMode.IWUSR
        if not inodes.check_permission(inode_no, int(access), *self._ids()):
            raise FsError("Permission denied")
        if len(self._open_files) >= MAX_OPEN_FILES:
            raise FsError("Too many open files")
        handle.fd = self.next_fd
        self.next_fd += 1
        self._open_files[handle.fd] = handle
        return handle.fd

    def close(self, fd) -> None:
        self._require_login()
        self._handle(fd)
        del self._open_files[fd]

    def read(self, fd, size) -> bytes:
        """Read up to ``size`` bytes at the descriptor's offset and advance it."""
        self._require_login()
        handle = self._handle(fd)
        if not handle.readable:
            raise FsError("File not opened for reading")
        inodes = self._require_tree().inodes
        try:
            data = inodes.read_data(handle.inode_no, size, handle.offset)
        except _FS_ERRORS as exc:
            raise FsError("Failed to read file") from exc
        handle.offset += len(data)
        return data

    def write(self, fd, data) -> int:
        """Write at the descriptor's offset, advance it and return the bytes written."""
        self._require_login()
        handle = self._handle(fd)
        if not handle.writable:
            raise FsError("File not opened for writing")
        if isinstance(data, str):
            data = data.encode("utf-8")
        inodes = self._require_tree().inodes
        try:
            written = inodes.write_data(handle.inode_no, data, handle.offset)
        except _FS_ERRORS as exc:
            raise FsError("Failed to write file") from exc
        handle.offset += written
        return written

    # Directories

    def dir(self, path="/") -> str:
        self._require_login()
        tree = self._require_tree()
        try:
            rows = tree.list_directory(path, *self._ids())
        except _FS_ERRORS as exc:
            raise FsError("Failed to list directory") from exc
        return format_listing(path, rows)

    def mkdir(self, path) -> int:
        self._require_login()
        tree = self._require_tree()
        uid, gid = self._ids()
        try:
            return tree.create_directory(path, DIRECTORY_MODE, uid, gid)
        except _FS_ERRORS as exc:
            raise FsError("Failed to create directory") from exc

    def rmdir(self, path) -> None:
        self._require_login()
        tree = self._require_tree()
        try:
            tree.delete_directory(path, *self._ids())
        except _FS_ERRORS as exc:
            raise FsError("Failed to remove directory") from exc

    def cd(self, path="/") -> int:
        self._require_login()
        tree = self._require_tree()
        try:
            return tree.change_directory(path, *self._ids())
        except _FS_ERRORS as exc:
            raise FsError("Failed to change directory") from exc

    # Permissions

    def chmod(self, path, mode) -> None:
        self._require_login()
        inodes = self._require_tree().inodes
        inode_no = self._lookup(path)
        try:
            inodes.change_permission(inode_no, mode)
        except DiskError as exc:
            raise FsError("Failed to change permissions") from exc

    def chown(self, path, uid, gid) -> None:
        self._require_login()
        inodes = self._require_tree().inodes
        inode_no = self._lookup(path)
        try:
            inodes.change_owner(inode_no, uid, gid)
        except DiskError as exc:
            raise FsError("Failed to change owner") from exc

    def cleanup(self) -> None:
        self._close_disk()