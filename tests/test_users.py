import os

import pytest

from ext2sim.disk import Disk
from ext2sim.layout import BLOCK_SIZE, MAX_BLOCKS, MAX_USERS, FileMode, Inode, Superblock
from ext2sim.users import ANONYMOUS, MAX_NAME_LENGTH, NO_ID, UserError, UserTable


@pytest.fixture
def table():
    return UserTable()


@pytest.fixture
def disk(tmp_path):
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(BLOCK_SIZE * MAX_BLOCKS))
    with Disk.open(path, Superblock()) as opened:
        yield opened


def test_default_users_skip_gid_conflict(table):
    assert table.find_user("root") is not None
    assert table.find_user("user1") is not None
    assert table.find_user("user2") is None
    assert [user.username for user in table] == ["root", "user1"]


def test_anonymous_when_logged_out(table):
    assert not table.is_logged_in()
    assert table.current_uid() == NO_ID
    assert table.current_gid() == NO_ID
    assert table.current_username() == ANONYMOUS
    assert table.logout() is None


def test_login_and_logout(table):
    table.add_user("alice", "secret", 5, 6)
    user = table.login("alice", "secret")
    assert user.username == "alice"
    assert table.is_logged_in()
    assert (table.current_uid(), table.current_gid()) == (5, 6)
    assert table.current_username() == "alice"
    assert table.logout().username == "alice"
    assert not table.is_logged_in()


def test_login_failures(table):
    table.add_user("alice", "secret", 5, 5)
    with pytest.raises(UserError):
        table.login("alice", "password")
    with pytest.raises(UserError):
        table.login("nobody", "secret")
    assert not table.is_logged_in()


def test_add_user_rejects_id_conflicts(table):
    with pytest.raises(UserError):
        table.add_user("bob", "secret", 1, 50)
    with pytest.raises(UserError):
        table.add_user("bob", "secret", 50, 1)
    assert table.find_user("bob") is None


def test_add_user_requires_name(table):
    with pytest.raises(UserError):
        table.add_user("", "secret", 9, 9)


def test_table_full(table):
    existing = len(list(table))
    for offset in range(MAX_USERS - existing):
        table.add_user(f"u{offset}", "secret", 100 + offset, 100 + offset)
    assert len(list(table)) == MAX_USERS
    with pytest.raises(UserError):
        table.add_user("extra", "secret", 500, 500)


def test_remove_user_frees_slot(table):
    index = table.add_user("alice", "secret", 5, 5)
    table.remove_user("alice")
    assert table.find_user("alice") is None
    assert table.add_user("bob", "secret", 5, 5) == index
    with pytest.raises(UserError):
        table.remove_user("alice")


def test_username_is_truncated(table):
    long_name = "x" * (MAX_NAME_LENGTH + 9)
    index = table.add_user(long_name, "secret", 7, 7)
    assert table.find_user(long_name[:MAX_NAME_LENGTH]) == index


def test_change_password(table):
    table.add_user("alice", "secret", 5, 5)
    table.change_password("alice", "secret", "password")
    with pytest.raises(UserError):
        table.login("alice", "secret")
    assert table.login("alice", "password").uid == 5


def test_change_password_errors(table):
    table.add_user("alice", "secret", 5, 5)
    with pytest.raises(UserError):
        table.change_password("alice", "token", "password")
    with pytest.raises(UserError):
        table.change_password("nobody", "secret", "password")


def test_format_users_marks_current(table):
    table.add_user("alice", "secret", 5, 5)
    table.login("alice", "secret")
    lines = table.format_users().splitlines()
    assert lines[0] == "User List:"
    assert lines[1].startswith("Username")
    alice_line = next(line for line in lines if line.startswith("alice"))
    root_line = next(line for line in lines if line.startswith("root"))
    assert "Logged in" in alice_line
    assert "Active" in root_line
    assert len(lines) == 3 + len(list(table))


def test_file_permissions_by_class(table, disk):
    disk.write_inode(4, Inode(mode=FileMode.IFREG | 0o640, uid=1, gid=9))
    table.add_user("member", "secret", 7, 9)
    table.add_user("stranger", "secret", 8, 8)

    table.remove_user("user1")
    table.add_user("owner", "secret", 1, 1)
    table.login("owner", "secret")
    assert table.check_file_permission(disk, 4, os.R_OK | os.W_OK)
    assert not table.check_file_permission(disk, 4, os.X_OK)

    table.login("member", "secret")
    assert table.check_file_permission(disk, 4, os.R_OK)
    assert not table.check_directory_permission(disk, 4, os.W_OK)

    table.login("stranger", "secret")
    assert not table.check_file_permission(disk, 4, os.R_OK)


def test_root_has_all_permissions(table, disk):
    disk.write_inode(4, Inode(mode=FileMode.IFREG, uid=1, gid=1))
    table.remove_user("root")
    table.add_user("admin", "secret", 0, 0)
    table.login("admin", "secret")
    assert table.check_file_permission(disk, 4, os.R_OK | os.W_OK | os.X_OK)


def test_unreadable_inode_denies(table, disk):
    table.add_user("alice", "secret", 5, 5)
    table.login("alice", "secret")
    assert table.check_file_permission(disk, 0, 0) is False