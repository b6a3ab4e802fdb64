"""User accounts, login state and permission checks."""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass
from typing import Iterator, Optional

from .disk import DiskError
from .layout import MAX_USERS

MAX_NAME_LENGTH = 31
NO_ID = 65535
ANONYMOUS = "anonymous"

_DEFAULT_USERS = (
    ("root", "root", 0, 0),
    ("user1", "password1", 1, 1),
    ("user2", "password2", 2, 1),
)


class UserError(Exception):
    """Raised when a user operation fails."""


@dataclass
class User:
    username: str
    password: str
    uid: int
    gid: int
    is_active: bool = True


class UserTable:
    """A fixed-size table of user accounts with one logged-in user."""

    def __init__(self):
        self._slots: list = [None] * MAX_USERS
        self._current: Optional[int] = None
        for username, password, uid, gid in _DEFAULT_USERS:
            # A default that clashes with an earlier one is simply not added.
            with suppress(UserError):
                self.add_user(username, password, uid, gid)

    def __iter__(self) -> Iterator[User]:
        return (user for user in self._slots if user is not None and user.is_active)

    def add_user(self, username, password, uid, gid) -> int:
        """Add a user to the first free slot and return the slot index."""
        if not username or password is None:
            raise UserError("username and password are required")
        if any(user.uid == uid or user.gid == gid for user in self):
            raise UserError("uid or gid already in use")
        for index, user in enumerate(self._slots):
            if user is None or not user.is_active:
                self._slots[index] = User(
                    username[:MAX_NAME_LENGTH], password[:MAX_NAME_LENGTH], uid, gid
                )
                return index
        raise UserError("user table is full")

    def remove_user(self, username) -> None:
        index = self.find_user(username)
        if index is None:
            raise UserError(f"no such user: {username}")
        self._slots[index].is_active = False

    def find_user(self, username) -> Optional[int]:
        """Return the slot index of an active user, or None."""
        for index, user in enumerate(self._slots):
            if user is not None and user.is_active and user.username == username:
                return index
        return None

    @property
    def current_user(self) -> Optional[User]:
        return None if self._current is None else self._slots[self._current]

    def login(self, username, password) -> User:
        index = self.find_user(username)
        if index is None or self._slots[index].password != password:
            raise UserError("login failed")
        self._current = index
        return self._slots[index]

    def logout(self) -> Optional[User]:
        """Log the current user out and return it, or None if nobody was in."""
        user = self.current_user
        self._current = None
        return user

    def is_logged_in(self) -> bool:
        return self._current is not None

    def current_uid(self) -> int:
        user = self.current_user
        return NO_ID if user is None else user.uid

    def current_gid(self) -> int:
        user = self.current_user
        return NO_ID if user is None else user.gid

    def current_username(self) -> str:
        user = self.current_user
        return ANONYMOUS if user is None else user.username

    def check_file_permission(self, disk, inode_no, access) -> bool:
        """Check 3-bit ``access`` (r=4, w=2, x=1) for the current user; root passes."""
        try:
            inode = disk.read_inode(inode_no)
        except DiskError:
            return False
        uid = self.current_uid()
        gid = self.current_gid()
        if uid == 0:
            return True
        if uid == inode.uid:
            bits = (inode.mode >> 6) & 0x7
        elif gid == inode.gid:
            bits = (inode.mode >> 3) & 0x7
        else:
            bits = inode.mode & 0x7
        return (bits & access) == access

    def check_directory_permission(self, disk, inode_no, access) -> bool:
        return self.check_file_permission(disk, inode_no, access)

    def format_users(self) -> str:
        lines = [
            "User List:",
            f"{'Username':<15} {'UID':<10} {'GID':<10} {'Status':<10}",
            "-" * 40,
        ]
        for index, user in enumerate(self._slots):
            if user is None or not user.is_active:
                continue
            status = "Logged in" if index == self._current else "Active"
            lines.append(f"{user.username:<15} {user.uid:<10} {user.gid:<10} {status:<10}")
        return "\n".join(lines) + "\n"

    def change_password(self, username, old_password, new_password) -> None:
        index = self.find_user(username)
        if index is None:
            raise UserError(f"no such user: {username}")
        user = self._slots[index]
        if user.password != old_password:
            raise UserError("old password does not match")
        user.password = new_password[:MAX_NAME_LENGTH]