"""A simplified EXT2-style file system simulator stored in a disk image file."""

__version__ = "0.1.0"

__all__ = ["directory", "disk", "filesystem", "inodes", "layout", "shell", "users"]