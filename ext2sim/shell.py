"""Interactive command shell for the filesystem simulator."""

from __future__ import annotations

import re
import signal
import sys
from typing import Callable, Optional, TextIO

from .filesystem import FileSystem, FsError

READ_BUFFER = 1024
EXIT = 1

_WORD = re.compile(r"[^ \t\n]+")
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_OCTAL_PREFIX = re.compile(r"\s*([+-]?[0-7]+)")

_HELP = (
    ("format <disk_image>", "Format a new disk image"),
    ("mount <disk_image>", "Mount a disk image"),
    ("umount", "Unmount current disk image"),
    ("status", "Show file system status"),
    ("login <user> <pass>", "Login as user"),
    ("logout", "Logout current user"),
    ("users", "List all users"),
    ("mkdir <path>", "Create directory"),
    ("rmdir <path>", "Remove directory"),
    ("dir <path>", "List directory contents"),
    ("cd <path>", "Change directory"),
    ("create <path>", "Create file"),
    ("delete <path>", "Delete file"),
    ("open <path> <flags>", "Open file (0=read, 1=write, 2=readwrite)"),
    ("close <fd>", "Close file"),
    ("read <fd> <size>", "Read from file"),
    ("write <fd> <data>", "Write to file"),
    ("chmod <path> <mode>", "Change file permissions"),
    ("chown <path> <uid> <gid>", "Change file owner"),
    ("help", "Show this help"),
    ("quit", "Exit program"),
)

_BANNER = (
    "========================================\n"
    "    EXT2 File System Simulator\n"
    "========================================\n"
    "This is a simplified EXT2 file system implementation\n"
    "Features:\n"
    "- File and directory operations\n"
    "- User authentication and permissions\n"
    "- Inode-based file management\n"
    "- Block allocation and bitmap management\n"
    "- Multi-level directory structure\n"
    "========================================\n\n"
)


def help_text() -> str:
    """Return the list of commands shown by ``help``."""
    lines = ["Available commands:"]
    lines.extend(f"  {usage:<23} - {text}" for usage, text in _HELP)
    return "\n".join(lines) + "\n"


def usage_text() -> str:
    return (
        "EXT2 File System Simulator\n"
        "Usage: ./ext2fs\n"
        "Type 'help' for available commands\n"
    )


def _parse_int(text: str, pattern: re.Pattern = _INT_PREFIX, base: int = 10) -> int:
    """Parse a leading integer like atoi/strtol; text without one gives 0."""
    match = pattern.match(text)
    return int(match.group(1), base) if match else 0


class Shell:
    """Parses command lines and runs them against a FileSystem."""

    def __init__(self, fs: Optional[FileSystem] = None, out: Optional[TextIO] = None):
        self.fs = fs if fs is not None else FileSystem()
        self.out = out if out is not None else sys.stdout
        self._commands: dict = {
            "format": self._format,
            "mount": self._mount,
            "umount": self._umount,
            "status": self._status,
            "login": self._login,
            "logout": self._logout,
            "users": self._users,
            "mkdir": self._mkdir,
            "rmdir": self._rmdir,
            "dir": self._dir,
            "cd": self._cd,
            "create": self._create,
            "delete": self._delete,
            "open": self._open,
            "close": self._close,
            "read": self._read,
            "write": self._write,
            "chmod": self._chmod,
            "chown": self._chown,
            "help": self._help,
        }

    def _say(self, text: str = "") -> None:
        self.out.write(text + "\n")

    def execute(self, line: str) -> int:
        """Run one command line; return 0 on success, -1 on error, 1 to quit."""
        words = list(_WORD.finditer(line))
        if not words:
            return 0
        name = words[0].group()
        if name in ("quit", "exit"):
            return EXIT
        handler: Optional[Callable] = self._commands.get(name)
        if handler is None:
            self._say(f"Unknown command: {name}")
            self._say("Type 'help' for available commands")
            return -1
        try:
            return handler(line, [match.group() for match in words[1:]], words)
        except FsError as exc:
            self._say(f"Error: {exc}")
            return -1

    def loop(self, stream: TextIO) -> None:
        """Read and run commands from ``stream`` until end of input or quit."""
        self._say("EXT2 File System Simulator")
        self._say("Type 'help' for available commands")
        while True:
            self.out.write("ext2fs> ")
            self.out.flush()
            line = stream.readline()
            if not line:
                break
            if self.execute(line) == EXIT:
                break

    def _missing(self, what: str) -> int:
        self._say(f"Error: Missing {what}")
        return -1

    # Filesystem management

    def _format(self, line, args, words) -> int:
        if not args:
            return self._missing("disk image name")
        self._say(f"Formatting disk image: {args[0]}")
        self.fs.format(args[0])
        self._say("Disk image formatted successfully")
        return 0

    def _mount(self, line, args, words) -> int:
        if not args:
            return self._missing("disk image name")
        self.fs.mount(args[0])
        self._say(f"Disk image mounted: {args[0]}")
        return 0

    def _umount(self, line, args, words) -> int:
        self.fs.umount()
        self._say("Disk image unmounted")
        return 0

    def _status(self, line, args, words) -> int:
        self.out.write(self.fs.status())
        return 0

    # Users

    def _login(self, line, args, words) -> int:
        if len(args) < 2:
            return self._missing("username or password")
        user = self.fs.login(args[0], args[1])
        self._say(f"Login successful. Welcome, {user.username}!")
        return 0

    def _logout(self, line, args, words) -> int:
        user = self.fs.logout()
        if user is not None:
            self._say(f"Logout successful. Goodbye, {user.username}!")
        return 0

    def _users(self, line, args, words) -> int:
        self.out.write(self.fs.users())
        return 0

    # Directories

    def _mkdir(self, line, args, words) -> int:
        if not args:
            return self._missing("directory path")
        self.fs.mkdir(args[0])
        self._say(f"Directory created: {args[0]}")
        return 0

    def _rmdir(self, line, args, words) -> int:
        if not args:
            return self._missing("directory path")
        self.fs.rmdir(args[0])
        self._say(f"Directory removed: {args[0]}")
        return 0

    def _dir(self, line, args, words) -> int:
        path = args[0] if args else "/"
        self.out.write(self.fs.dir(path))
        return 0

    def _cd(self, line, args, words) -> int:
        path = args[0] if args else "/"
        self.fs.cd(path)
        self._say(f"Changed directory to: {path}")
        return 0

    # Files

    def _create(self, line, args, words) -> int:
        if not args:
            return self._missing("file path")
        self.fs.create(args[0])
        self._say(f"File created: {args[0]}")
        return 0

    def _delete(self, line, args, words) -> int:
        if not args:
            return self._missing("file path")
        self.fs.delete(args[0])
        self._say(f"File deleted: {args[0]}")
        return 0

    def _open(self, line, args, words) -> int:
        if len(args) < 2:
            return self._missing("file path or flags")
        fd = self.fs.open(args[0], _parse_int(args[1]))
        self._say(f"File opened: {args[0]} (fd={fd})")
        return fd

    def _close(self, line, args, words) -> int:
        if not args:
            return self._missing("file descriptor")
        fd = _parse_int(args[0])
        self.fs.close(fd)
        self._say(f"File closed: fd={fd}")
        return 0

    def _read(self, line, args, words) -> int:
        if len(args) < 2:
            return self._missing("file descriptor or size")
        size = _parse_int(args[1])
        limit = READ_BUFFER - 1
        size = limit if size < 0 else min(size, limit)
        data = self.fs.read(_parse_int(args[0]), size)
        if data:
            self._say(f"Read: {data.decode('utf-8', errors='replace')}")
        return len(data)

    def _write(self, line, args, words) -> int:
        data = None
        if len(words) >= 2:
            rest = line[words[1].end() + 1:].lstrip("\n")
            data = rest.split("\n", 1)[0] or None
        if not args or data is None:
            return self._missing("file descriptor or data")
        return self.fs.write(_parse_int(args[0]), data)

    # Permissions

    def _chmod(self, line, args, words) -> int:
        if len(args) < 2:
            return self._missing("path or mode")
        mode = _parse_int(args[1], _OCTAL_PREFIX, 8) & 0xFFFF
        self.fs.chmod(args[0], mode)
        self._say(f"Permissions changed: {args[0]}")
        return 0

    def _chown(self, line, args, words) -> int:
        if len(args) < 3:
            return self._missing("path, uid, or gid")
        uid = _parse_int(args[1]) & 0xFFFF
        gid = _parse_int(args[2]) & 0xFFFF
        self.fs.chown(args[0], uid, gid)
        self._say(f"Owner changed: {args[0]}")
        return 0

    def _help(self, line, args, words) -> int:
        self.out.write(help_text())
        return 0


def main(argv=None) -> int:
    """Run the interactive simulator on standard input."""
    fs = FileSystem()
    out = sys.stdout

    def cleanup() -> None:
        fs.cleanup()
        out.write("EXT2 file system cleaned up\n")

    def on_signal(signum, frame) -> None:
        out.write(f"\nReceived signal {signum}, cleaning up...\n")
        cleanup()
        raise SystemExit(0)

    previous = {sig: signal.signal(sig, on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        out.write(_BANNER)
        Shell(fs, out).loop(sys.stdin)
        cleanup()
        out.write("Goodbye!\n")
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return 0