# ext2sim

A small simulator of an EXT2-style file system. The whole file system lives
in one disk image file of 1024 blocks of 1024 bytes: a superblock in block 0,
a block bitmap in block 1, an inode bitmap in block 2, an inode table from
block 3 on, and data blocks. On top of that sit user accounts with uids and
gids, Unix-style permission bits, directories with `.` and `..` entries, and
numbered file descriptors.

It is meant for learning how an inode-based file system fits together, not
for storing real data.

## Installation

```
pip install .
```

No third-party libraries are needed. To run the tests, install the `test`
extra (`pip install .[test]`) and run `pytest`.

## Preparing a disk image

There are two ways to create an image, and they differ:

- `ext2sim.filesystem.format_image(path)` writes a complete image: a
  superblock, block and inode bitmaps, and a root directory (inode 1, owned
  by uid 0 and gid 0, mode `drwxr-xr-x`) holding `.` and `..`. It returns
  the `Superblock` it wrote.
- `ext2sim.filesystem.write_blank_image(path)` writes a zeroed image that
  holds only a superblock. `FileSystem.format` and the shell's `format`
  command do this. Such an image mounts, but it has no root directory, so
  directory and file commands on it fail.

To work with files from the shell, create the image with `format_image`
first:

```
python -c "from ext2sim.filesystem import format_image; format_image('disk.img')"
```

## The shell

Installing the package provides the `ext2sim` command, an interactive shell
reading commands from standard input:

```
ext2sim
```

A session on an image made by `format_image`:

```
ext2fs> mount disk.img
ext2fs> login root <pass>
ext2fs> mkdir /docs
ext2fs> create /docs/notes.txt
ext2fs> open /docs/notes.txt 2
ext2fs> write 3 hello world
ext2fs> close 3
ext2fs> dir /docs
ext2fs> status
ext2fs> quit
```

Three accounts are set up when the shell starts: `root` (uid 0, gid 0),
`user1` (uid 1, gid 1) and `user2` (uid 2, gid 1); their passwords are set
in `ext2sim.users`. `users` lists the accounts once you are logged in.

Commands:

| Command | Meaning |
| --- | --- |
| `format <disk_image>` | Write a zeroed image holding only a superblock |
| `mount <disk_image>` | Mount an image (its superblock magic must be `0xEF53`) |
| `umount` | Unmount the current image |
| `status` | Show the image name, block and inode counts, current user and open files |
| `login <user> <pass>` | Log in |
| `logout` | Log out |
| `users` | List user accounts |
| `mkdir <path>` / `rmdir <path>` | Create a directory / remove an empty one |
| `dir [path]` | List a directory (default `/`) |
| `cd [path]` | Check that a directory exists and may be entered (default `/`) |
| `create <path>` / `delete <path>` | Create an empty regular file / delete a file |
| `open <path> <flags>` | Open a file: 0 read, 1 write, 2 read/write; prints the descriptor |
| `close <fd>` | Close a descriptor |
| `read <fd> <size>` | Read up to `size` bytes (at most 1023) at the descriptor's offset |
| `write <fd> <data>` | Write the rest of the line at the descriptor's offset |
| `chmod <path> <mode>` | Change permission bits (mode in octal) |
| `chown <path> <uid> <gid>` | Change owner and group |
| `help` | Show the command list |
| `quit` / `exit` | Leave the shell |

Errors are printed as `Error: ...` lines and the shell carries on. Interrupt
and terminate signals close the image before the shell exits.

## Using it from Python

`ext2sim.filesystem.FileSystem` offers the same operations as methods
(`mount`, `umount`, `status`, `login`, `logout`, `users`, `create`, `delete`,
`open`, `close`, `read`, `write`, `dir`, `mkdir`, `rmdir`, `cd`, `chmod`,
`chown`, `cleanup`). Failures raise `ext2sim.filesystem.FsError`; text
output (`status`, `users`, `dir`) is returned as a string.

```python
from ext2sim.filesystem import FileSystem, format_image

format_image("disk.img")

fs = FileSystem()
fs.mount("disk.img")

password = "password"
fs.accounts.add_user("alice", password, 10, 10)
fs.login("alice", password)

fs.chown("/", 10, 10)            # the root directory belongs to uid 0
fs.mkdir("/docs")
fs.create("/docs/notes.txt")
fd = fs.open("/docs/notes.txt", 2)
fs.write(fd, b"hello")
fs.close(fd)

fd = fs.open("/docs/notes.txt", 0)
print(fs.read(fd, 100))          # b'hello'
fs.close(fd)

print(fs.dir("/docs"))
fs.cleanup()
```

The lower layers can be used on their own:

- `ext2sim.layout` holds the constants and the `Superblock`, `Inode` and
  `DirEntry` records with `pack` and `unpack`, and the `FileMode` flags.
- `ext2sim.disk.Disk` reads and writes blocks and inodes and allocates blocks
  and inodes from the bitmaps; it is a context manager.
- `ext2sim.inodes.InodeTable` creates and deletes inodes, maps blocks, reads,
  writes and truncates file data, and changes permissions and owners.
- `ext2sim.directory.DirectoryTree` resolves paths and maintains directory
  entries; `format_listing`, `is_valid_filename` and `normalize_path` are
  helpers beside it.
- `ext2sim.users.UserTable` keeps the accounts and the logged-in user.
- `ext2sim.shell.Shell` runs command lines against a `FileSystem`;
  `Shell.execute` returns 0 on success, -1 on error and 1 for `quit`.

## What it does not do

- There is no current directory: every path is resolved from `/`, and `cd`
  only checks the directory.
- The shell's `format` does not create bitmaps or a root directory; use
  `format_image` for a usable image.
- User accounts live in memory only and are not stored in the image.
- Free block and inode counts are kept in memory after mounting; the
  superblock on disk is not rewritten.
- Permission checks on files and directories give uid 0 no special rights;
  `chmod` and `chown` need only a logged-in user.
- There are no links, renames or a truncate command.

## Limits

- 1024 blocks, 128 inodes, 16 user accounts, 16 open files.
- Files use 12 direct blocks plus one single-indirect block.
- Directory listings show at most 64 entries.
- File descriptors start at 3 and are not reused.