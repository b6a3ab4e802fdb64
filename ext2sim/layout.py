"""On-disk structures and constants of the simulated ext2 image."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntFlag
from typing import ClassVar

BLOCK_SIZE = 1024
MAX_BLOCKS = 1024
MAX_INODES = 128
MAX_USERS = 16
MAX_FILENAME = 255
MAX_PATH = 1024
MAX_OPEN_FILES = 16

EXT2_MAGIC = 0xEF53
FILE_TYPE_MASK = 0xF000
PERMISSION_MASK = 0x0FFF

# File type codes stored in directory entries.
FT_REG_FILE = 1
FT_DIR = 2


class FileMode(IntFlag):
    """File type and permission bits of an inode's mode."""

    IFREG = 0x8000
    IFDIR = 0x4000
    IFCHR = 0x2000
    IFIFO = 0x1000
    IFSOCK = 0xC000
    IFLNK = 0xA000
    IFBLK = 0x6000

    IRUSR = 0x0100
    IWUSR = 0x0080
    IXUSR = 0x0040
    IRGRP = 0x0020
    IWGRP = 0x0010
    IXGRP = 0x0008
    IROTH = 0x0004
    IWOTH = 0x0002
    IXOTH = 0x0001


def _cstr(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class Superblock:
    """The filesystem superblock stored at the start of block 0."""

    inodes_count: int = 0
    blocks_count: int = 0
    r_blocks_count: int = 0
    free_blocks_count: int = 0
    free_inodes_count: int = 0
    first_data_block: int = 0
    log_block_size: int = 0
    log_frag_size: int = 0
    blocks_per_group: int = 0
    frags_per_group: int = 0
    inodes_per_group: int = 0
    mtime: int = 0
    wtime: int = 0
    mnt_count: int = 0
    max_mnt_count: int = 0
    magic: int = 0
    state: int = 0
    errors: int = 0
    minor_rev_level: int = 0
    lastcheck: int = 0
    checkinterval: int = 0
    creator_os: int = 0
    rev_level: int = 0
    def_resuid: int = 0
    def_resgid: int = 0
    first_ino: int = 0
    inode_size: int = 0
    block_group_nr: int = 0
    feature_compat: int = 0
    feature_incompat: int = 0
    feature_ro_compat: int = 0
    uuid: bytes = bytes(16)
    volume_name: str = ""
    last_mounted: str = ""
    journal_uuid: tuple = (0, 0, 0, 0)

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<13I6H4I2HI2H3I16s16s64s4I")
    SIZE: ClassVar[int] = _STRUCT.size

    _INT_FIELDS: ClassVar[tuple] = (
        "inodes_count", "blocks_count", "r_blocks_count", "free_blocks_count",
        "free_inodes_count", "first_data_block", "log_block_size", "log_frag_size",
        "blocks_per_group", "frags_per_group", "inodes_per_group", "mtime", "wtime",
        "mnt_count", "max_mnt_count", "magic", "state", "errors", "minor_rev_level",
        "lastcheck", "checkinterval", "creator_os", "rev_level",
        "def_resuid", "def_resgid", "first_ino", "inode_size", "block_group_nr",
        "feature_compat", "feature_incompat", "feature_ro_compat",
    )

    def pack(self) -> bytes:
        """Serialise to the on-disk byte layout."""
        journal = tuple(self.journal_uuid)
        if len(journal) != 4:
            raise ValueError("journal_uuid must hold four integers")
        return self._STRUCT.pack(
            *(getattr(self, name) for name in self._INT_FIELDS),
            bytes(self.uuid),
            self.volume_name.encode("utf-8"),
            self.last_mounted.encode("utf-8"),
            *journal,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Superblock":
        """Parse a superblock from the start of ``data``."""
        _require(data, cls.SIZE, "superblock")
        values = cls._STRUCT.unpack_from(data)
        count = len(cls._INT_FIELDS)
        ints = dict(zip(cls._INT_FIELDS, values[:count]))
        uuid, volume, mounted = values[count:count + 3]
        return cls(
            **ints,
            uuid=uuid,
            volume_name=_cstr(volume),
            last_mounted=_cstr(mounted),
            journal_uuid=tuple(values[count + 3:]),
        )


@dataclass
class Inode:
    """An inode record of the inode table."""

    mode: int = 0
    uid: int = 0
    size: int = 0
    atime: int = 0
    ctime: int = 0
    mtime: int = 0
    dtime: int = 0
    gid: int = 0
    links_count: int = 0
    blocks: int = 0
    flags: int = 0
    block: list = field(default_factory=lambda: [0] * 15)

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<2H5I2H2I15I")
    SIZE: ClassVar[int] = _STRUCT.size
    PER_BLOCK: ClassVar[int] = BLOCK_SIZE // _STRUCT.size

    def pack(self) -> bytes:
        """Serialise to the on-disk byte layout."""
        if len(self.block) != 15:
            raise ValueError("an inode holds exactly 15 block pointers")
        return self._STRUCT.pack(
            self.mode, self.uid, self.size, self.atime, self.ctime, self.mtime,
            self.dtime, self.gid, self.links_count, self.blocks, self.flags,
            *self.block,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "Inode":
        """Parse an inode from the start of ``data``."""
        _require(data, cls.SIZE, "inode")
        values = cls._STRUCT.unpack_from(data)
        return cls(*values[:11], block=list(values[11:]))

    def is_directory(self) -> bool:
        return self.mode & FILE_TYPE_MASK == FileMode.IFDIR

    def is_regular_file(self) -> bool:
        return self.mode & FILE_TYPE_MASK == FileMode.IFREG

    def permission_string(self) -> str:
        """Return an ``ls``-style string such as ``drwxr-xr-x``."""
        if self.is_directory():
            kind = "d"
        elif self.is_regular_file():
            kind = "-"
        else:
            kind = "?"
        bits = (
            (FileMode.IRUSR, "r"), (FileMode.IWUSR, "w"), (FileMode.IXUSR, "x"),
            (FileMode.IRGRP, "r"), (FileMode.IWGRP, "w"), (FileMode.IXGRP, "x"),
            (FileMode.IROTH, "r"), (FileMode.IWOTH, "w"), (FileMode.IXOTH, "x"),
        )
        return kind + "".join(char if self.mode & bit else "-" for bit, char in bits)


@dataclass
class DirEntry:
    """A fixed-size directory entry slot."""

    inode: int = 0
    rec_len: int = 0
    name_len: int = 0
    file_type: int = 0
    name: str = ""

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<IHBB255sx")
    SIZE: ClassVar[int] = _STRUCT.size
    PER_BLOCK: ClassVar[int] = BLOCK_SIZE // _STRUCT.size

    def pack(self) -> bytes:
        """Serialise to the on-disk byte layout; the name is NUL-terminated."""
        raw_name = self.name.encode("utf-8")[: MAX_FILENAME - 1]
        return self._STRUCT.pack(
            self.inode, self.rec_len, self.name_len & 0xFF, self.file_type, raw_name
        )

    @classmethod
    def unpack(cls, data: bytes) -> "DirEntry":
        """Parse a directory entry from the start of ``data``."""
        _require(data, cls.SIZE, "directory entry")
        inode, rec_len, name_len, file_type, raw_name = cls._STRUCT.unpack_from(data)
        return cls(inode, rec_len, name_len, file_type, _cstr(raw_name))