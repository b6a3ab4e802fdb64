"""Block device access and bitmap allocation over a disk image file."""

from __future__ import annotations

import os
from typing import BinaryIO, Optional

from .layout import BLOCK_SIZE, MAX_BLOCKS, MAX_INODES, Inode, Superblock

SUPERBLOCK_BLOCK = 0
BLOCK_BITMAP_BLOCK = 1
INODE_BITMAP_BLOCK = 2
INODE_TABLE_BLOCK = 3

_U32 = 0xFFFFFFFF


class DiskError(Exception):
    """Raised when the disk image cannot be read or written."""


class NoSpaceError(DiskError):
    """Raised when no free block or inode is left."""


def set_bitmap_bit(bitmap: bytearray, bit: int) -> None:
    bitmap[bit // 8] |= 1 << (bit % 8)


def clear_bitmap_bit(bitmap: bytearray, bit: int) -> None:
    bitmap[bit // 8] &= ~(1 << (bit % 8)) & 0xFF


def get_bitmap_bit(bitmap: bytes, bit: int) -> int:
    return (bitmap[bit // 8] >> (bit % 8)) & 1


def find_free_bit(bitmap: bytes, size: int) -> Optional[int]:
    """Return the first clear bit in the first ``size`` bytes, or None."""
    for index, byte in enumerate(bitmap[:size]):
        if byte != 0xFF:
            for offset in range(8):
                if not (byte >> offset) & 1:
                    return index * 8 + offset
    return None


class Disk:
    """An open disk image with its block and inode bitmaps loaded."""

    def __init__(self, path, superblock: Optional[Superblock] = None):
        self.path = os.fspath(path)
        self.superblock = superblock if superblock is not None else Superblock()
        self.block_bitmap = bytearray(BLOCK_SIZE)
        self.inode_bitmap = bytearray(BLOCK_SIZE)
        try:
            self._file: Optional[BinaryIO] = open(self.path, "r+b")
        except OSError as exc:
            raise DiskError(f"cannot open disk image {self.path}") from exc
        try:
            self.block_bitmap[:] = self.read_block(BLOCK_BITMAP_BLOCK)
            self.inode_bitmap[:] = self.read_block(INODE_BITMAP_BLOCK)
        except DiskError:
            self.close()
            raise

    @classmethod
    def open(cls, path, superblock: Optional[Superblock] = None) -> "Disk":
        return cls(path, superblock)

    @property
    def closed(self) -> bool:
        return self._file is None

    def _handle(self) -> BinaryIO:
        if self._file is None:
            raise DiskError("disk image is not open")
        return self._file

    def read_block(self, block_no: int) -> bytes:
        handle = self._handle()
        if block_no < 0:
            raise DiskError(f"invalid block number {block_no}")
        handle.seek(block_no * BLOCK_SIZE)
        data = handle.read(BLOCK_SIZE)
        if len(data) != BLOCK_SIZE:
            raise DiskError(f"short read of block {block_no}")
        return data

    def write_block(self, block_no: int, data: bytes) -> None:
        """Write one block; shorter data is padded with zeros."""
        if len(data) > BLOCK_SIZE:
            raise ValueError(f"block data exceeds {BLOCK_SIZE} bytes")
        handle = self._handle()
        if block_no < 0:
            raise DiskError(f"invalid block number {block_no}")
        payload = bytes(data).ljust(BLOCK_SIZE, b"\0")
        try:
            handle.seek(block_no * BLOCK_SIZE)
            written = handle.write(payload)
            handle.flush()
        except OSError as exc:
            raise DiskError(f"cannot write block {block_no}") from exc
        if written != BLOCK_SIZE:
            raise DiskError(f"short write of block {block_no}")

    @staticmethod
    def _inode_location(inode_no: int) -> tuple:
        if inode_no <= 0 or inode_no >= MAX_INODES:
            raise DiskError(f"invalid inode number {inode_no}")
        index = inode_no - 1
        block_no = INODE_TABLE_BLOCK + index // Inode.PER_BLOCK
        offset = (index % Inode.PER_BLOCK) * Inode.SIZE
        return block_no, offset

    def read_inode(self, inode_no: int) -> Inode:
        block_no, offset = self._inode_location(inode_no)
        return Inode.unpack(self.read_block(block_no)[offset:offset + Inode.SIZE])

    def write_inode(self, inode_no: int, inode: Inode) -> None:
        block_no, offset = self._inode_location(inode_no)
        block = bytearray(self.read_block(block_no))
        block[offset:offset + Inode.SIZE] = inode.pack()
        self.write_block(block_no, block)

    def allocate_block(self) -> int:
        """Claim the first free block and return its number (counted from 1)."""
        bit = find_free_bit(self.block_bitmap, BLOCK_SIZE)
        if bit is None:
            raise NoSpaceError("no free blocks")
        set_bitmap_bit(self.block_bitmap, bit)
        self.superblock.free_blocks_count = (self.superblock.free_blocks_count - 1) & _U32
        self.write_block(BLOCK_BITMAP_BLOCK, self.block_bitmap)
        return bit + 1

    def free_block(self, block_no: int) -> None:
        """Release a block; numbers outside 1..MAX_BLOCKS are ignored."""
        if block_no == 0 or block_no > MAX_BLOCKS:
            return
        clear_bitmap_bit(self.block_bitmap, block_no - 1)
        self.superblock.free_blocks_count = (self.superblock.free_blocks_count + 1) & _U32
        self.write_block(BLOCK_BITMAP_BLOCK, self.block_bitmap)

    def allocate_inode(self) -> int:
        """Claim the first free inode and return its number (counted from 1)."""
        bit = find_free_bit(self.inode_bitmap, BLOCK_SIZE)
        if bit is None:
            raise NoSpaceError("no free inodes")
        set_bitmap_bit(self.inode_bitmap, bit)
        self.superblock.free_inodes_count = (self.superblock.free_inodes_count - 1) & _U32
        self.write_block(INODE_BITMAP_BLOCK, self.inode_bitmap)
        return bit + 1

    def free_inode(self, inode_no: int) -> None:
        """Release an inode; numbers outside 1..MAX_INODES are ignored."""
        if inode_no == 0 or inode_no > MAX_INODES:
            return
        clear_bitmap_bit(self.inode_bitmap, inode_no - 1)
        self.superblock.free_inodes_count = (self.superblock.free_inodes_count + 1) & _U32
        self.write_block(INODE_BITMAP_BLOCK, self.inode_bitmap)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "Disk":
        return self

    def __exit__(self, *args) -> None:
        self.close()