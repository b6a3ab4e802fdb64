"""Inode lifecycle, block mapping, file data and metadata operations."""

from __future__ import annotations

import struct
import time
from contextlib import suppress

from .disk import Disk, DiskError
from .layout import BLOCK_SIZE, FILE_TYPE_MASK, PERMISSION_MASK, Inode

DIRECT_BLOCKS = 12
INDIRECT_SLOT = 12
POINTERS_PER_BLOCK = BLOCK_SIZE // 4
MAX_FILE_BLOCKS = DIRECT_BLOCKS + POINTERS_PER_BLOCK

_U32 = 0xFFFFFFFF
_POINTERS = struct.Struct(f"<{POINTERS_PER_BLOCK}I")


class InodeError(Exception):
    """Raised when an inode operation is out of range or otherwise invalid."""


def _now() -> int:
    return int(time.time()) & _U32


def _rwx(access: int) -> int:
    """Fold permission bits of any class (owner, group, other) into r=4, w=2, x=1."""
    return ((access >> 6) | (access >> 3) | access) & 0o7


def _blocks_for(size: int) -> int:
    return (size + BLOCK_SIZE - 1) // BLOCK_SIZE


class InodeTable:
    """Operations on the inodes of an open disk image."""

    def __init__(self, disk: Disk):
        self.disk = disk

    # Inode lifecycle

    def create_inode(self, mode, uid, gid) -> int:
        """Allocate and initialise a new inode; return its number."""
        inode_no = self.disk.allocate_inode()
        now = _now()
        inode = Inode(
            mode=mode, uid=uid, gid=gid, size=0, links_count=1, blocks=0,
            atime=now, ctime=now, mtime=now,
        )
        try:
            self.disk.write_inode(inode_no, inode)
        except DiskError:
            self.disk.free_inode(inode_no)
            raise
        return inode_no

    def delete_inode(self, inode_no) -> None:
        """Free every data block of an inode, clear it and release it."""
        inode = self.disk.read_inode(inode_no)
        for block_no in inode.block[:DIRECT_BLOCKS]:
            if block_no:
                self.disk.free_block(block_no)
        indirect = inode.block[INDIRECT_SLOT]
        if indirect:
            with suppress(DiskError):
                for block_no in self._read_pointers(indirect):
                    if block_no:
                        self.disk.free_block(block_no)
            self.disk.free_block(indirect)
        self.disk.write_inode(inode_no, Inode())
        self.disk.free_inode(inode_no)

    # Block mapping

    def _read_pointers(self, block_no: int) -> list:
        return list(_POINTERS.unpack(self.disk.read_block(block_no)))

    def get_inode_block(self, inode_no, block_index) -> int:
        """Return the block number mapped at ``block_index`` (0 when unmapped)."""
        inode = self.disk.read_inode(inode_no)
        if 0 <= block_index < DIRECT_BLOCKS:
            return inode.block[block_index]
        if DIRECT_BLOCKS <= block_index < MAX_FILE_BLOCKS:
            indirect = inode.block[INDIRECT_SLOT]
            if indirect == 0:
                return 0
            return self._read_pointers(indirect)[block_index - DIRECT_BLOCKS]
        raise InodeError(f"block index {block_index} out of range")

    def set_inode_block(self, inode_no, block_index, block_no) -> None:
        """Map ``block_no`` at ``block_index``, allocating the indirect block if needed."""
        inode = self.disk.read_inode(inode_no)
        if 0 <= block_index < DIRECT_BLOCKS:
            inode.block[block_index] = block_no
        elif DIRECT_BLOCKS <= block_index < MAX_FILE_BLOCKS:
            if inode.block[INDIRECT_SLOT] == 0:
                inode.block[INDIRECT_SLOT] = self.disk.allocate_block()
                pointers = [0] * POINTERS_PER_BLOCK
            else:
                try:
                    pointers = self._read_pointers(inode.block[INDIRECT_SLOT])
                except DiskError:
                    pointers = [0] * POINTERS_PER_BLOCK
            pointers[block_index - DIRECT_BLOCKS] = block_no
            self.disk.write_block(inode.block[INDIRECT_SLOT], _POINTERS.pack(*pointers))
        else:
            raise InodeError(f"block index {block_index} out of range")
        self.disk.write_inode(inode_no, inode)

    # File data

    def read_data(self, inode_no, size, offset) -> bytes:
        """Read up to ``size`` bytes starting at ``offset``, stopping at end of file."""
        inode = self.disk.read_inode(inode_no)
        if offset >= inode.size:
            return b""
        end = min(offset + size, inode.size)
        chunks = []
        position = offset
        while position < end:
            block_index, block_offset = divmod(position, BLOCK_SIZE)
            try:
                block_no = self.get_inode_block(inode_no, block_index)
                if block_no == 0:
                    break
                block = self.disk.read_block(block_no)
            except (InodeError, DiskError):
                break
            count = min(BLOCK_SIZE - block_offset, end - position)
            chunks.append(block[block_offset:block_offset + count])
            position += count
        self.update_atime(inode_no)
        return b"".join(chunks)

    def write_data(self, inode_no, data, offset) -> int:
        """Write ``data`` at ``offset``, growing the file; return the bytes written."""
        self.disk.read_inode(inode_no)
        data = bytes(data)
        written = 0
        position = offset
        while written < len(data):
            block_index, block_offset = divmod(position, BLOCK_SIZE)
            try:
                block_no = self.get_inode_block(inode_no, block_index)
            except (InodeError, DiskError):
                break
            if block_no == 0:
                try:
                    block_no = self.disk.allocate_block()
                except DiskError:
                    break
                try:
                    self.set_inode_block(inode_no, block_index, block_no)
                except (InodeError, DiskError):
                    self.disk.free_block(block_no)
                    break
            try:
                block = bytearray(self.disk.read_block(block_no))
            except DiskError:
                break
            count = min(BLOCK_SIZE - block_offset, len(data) - written)
            block[block_offset:block_offset + count] = data[written:written + count]
            try:
                self.disk.write_block(block_no, block)
            except DiskError:
                break
            written += count
            position += count

        inode = self.disk.read_inode(inode_no)
        if position > inode.size:
            inode.size = position
            inode.blocks = _blocks_for(inode.size)
        now = _now()
        inode.mtime = now
        inode.ctime = now
        self.disk.write_inode(inode_no, inode)
        return written

    def truncate(self, inode_no, length) -> None:
        """Shrink a file to ``length`` bytes, freeing blocks past the new end."""
        inode = self.disk.read_inode(inode_no)
        if length >= inode.size:
            return
        new_blocks = _blocks_for(length)
        for block_index in range(new_blocks, _blocks_for(inode.size)):
            try:
                block_no = self.get_inode_block(inode_no, block_index)
            except (InodeError, DiskError):
                continue
            if block_no:
                self.disk.free_block(block_no)
                self.set_inode_block(inode_no, block_index, 0)
        inode = self.disk.read_inode(inode_no)
        inode.size = length
        inode.blocks = new_blocks
        now = _now()
        inode.mtime = now
        inode.ctime = now
        self.disk.write_inode(inode_no, inode)

    # Permissions and ownership

    def check_permission(self, inode_no, access, uid, gid) -> bool:
        """Check ``access`` for a user; bits of any class count as r, w and x."""
        try:
            inode = self.disk.read_inode(inode_no)
        except DiskError:
            return False
        if uid == inode.uid:
            bits = (inode.mode >> 6) & 0o7
        elif gid == inode.gid:
            bits = (inode.mode >> 3) & 0o7
        else:
            bits = inode.mode & 0o7
        wanted = _rwx(access)
        return (bits & wanted) == wanted

    def change_permission(self, inode_no, mode) -> None:
        """Replace the permission bits, keeping the file type."""
        inode = self.disk.read_inode(inode_no)
        inode.mode = (inode.mode & FILE_TYPE_MASK) | (mode & PERMISSION_MASK)
        inode.ctime = _now()
        self.disk.write_inode(inode_no, inode)

    def change_owner(self, inode_no, uid, gid) -> None:
        inode = self.disk.read_inode(inode_no)
        inode.uid = uid
        inode.gid = gid
        inode.ctime = _now()
        self.disk.write_inode(inode_no, inode)

    # Timestamps

    def _touch(self, inode_no, attribute: str) -> None:
        with suppress(DiskError):
            inode = self.disk.read_inode(inode_no)
            setattr(inode, attribute, _now())
            self.disk.write_inode(inode_no, inode)

    def update_atime(self, inode_no) -> None:
        self._touch(inode_no, "atime")

    def update_mtime(self, inode_no) -> None:
        self._touch(inode_no, "mtime")

    def update_ctime(self, inode_no) -> None:
        self._touch(inode_no, "ctime")

    # Link counts

    def increment_link_count(self, inode_no) -> int:
        """Add one link and return the new count."""
        inode = self.disk.read_inode(inode_no)
        inode.links_count = (inode.links_count + 1) & 0xFFFF
        inode.ctime = _now()
        self.disk.write_inode(inode_no, inode)
        return inode.links_count

    def decrement_link_count(self, inode_no) -> int:
        """Remove one link (never below zero) and return the new count."""
        inode = self.disk.read_inode(inode_no)
        if inode.links_count > 0:
            inode.links_count -= 1
        inode.ctime = _now()
        self.disk.write_inode(inode_no, inode)
        return inode.links_count

    # Queries

    def is_directory(self, inode_no) -> bool:
        try:
            return self.disk.read_inode(inode_no).is_directory()
        except DiskError:
            return False

    def is_regular_file(self, inode_no) -> bool:
        try:
            return self.disk.read_inode(inode_no).is_regular_file()
        except DiskError:
            return False

    def get_file_size(self, inode_no) -> int:
        try:
            return self.disk.read_inode(inode_no).size
        except DiskError:
            return 0