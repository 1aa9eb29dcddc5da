import re
import sqlite3

import pytest

from honker.commands import (
    db_migrations_status,
    find_missing_migrations,
    list_all_db_versions,
    redo,
    reset,
    status,
    up,
    up_by_one,
    up_to,
    version,
)
from honker.migrate import (
    Migrations,
    NoNextVersionError,
    clear_registered_migrations,
    get_db_version,
)
from honker.migration import (
    Migration,
    MigrationError,
    set_dialect,
    set_logger,
)


class _Capture:
    def __init__(self):
        self.lines = []

    def info(self, msg, *args):
        self.lines.append(msg % args if args else msg)


_FILES = {
    "00001_create_users.sql": (
        "-- +goose Up\nCREATE TABLE users (id INTEGER);\n"
        "-- +goose Down\nDROP TABLE users;\n"
    ),
    "00002_create_posts.sql": (
        "-- +goose Up\nCREATE TABLE posts (id INTEGER);\n"
        "-- +goose Down\nDROP TABLE posts;\n"
    ),
    "00003_create_tags.sql": (
        "-- +goose Up\nCREATE TABLE tags (id INTEGER);\n"
        "-- +goose Down\nDROP TABLE tags;\n"
    ),
}


@pytest.fixture
def capture():
    logger = _Capture()
    set_dialect("sqlite3")
    set_logger(logger)
    clear_registered_migrations()
    yield logger
    set_logger(None)
    set_dialect("postgres")
    clear_registered_migrations()


@pytest.fixture
def db(capture):
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def migrations_dir(tmp_path):
    for name, body in _FILES.items():
        (tmp_path / name).write_text(body)
    return str(tmp_path)


def _tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {name for (name,) in rows}


def test_find_missing_migrations():
    known = Migrations(Migration(version=v) for v in (1, 3, 4, 5, 7))
    new = Migrations(Migration(version=v) for v in (1, 2, 3, 4, 5, 6, 7, 8))
    got = find_missing_migrations(known, new, 7)
    assert [m.version for m in got] == [2, 6]


def test_find_missing_migrations_none_missing():
    known = Migrations(Migration(version=v) for v in (1, 2))
    new = Migrations(Migration(version=v) for v in (1, 2, 3))
    assert list(find_missing_migrations(known, new, 2)) == []


def test_up_applies_all(db, migrations_dir, capture):
    up(db, migrations_dir)
    assert get_db_version(db) == 3
    assert {"users", "posts", "tags"} <= _tables(db)
    assert "goose: successfully migrated database to version: 3" in capture.lines


def test_up_twice_reports_nothing_to_run(db, migrations_dir, capture):
    up(db, migrations_dir)
    up(db, migrations_dir)
    assert "goose: no migrations to run. current version: 3" in capture.lines


def test_up_to_stops_at_version(db, migrations_dir):
    up_to(db, migrations_dir, 2)
    assert get_db_version(db) == 2
    assert "tags" not in _tables(db)


def test_up_by_one(db, migrations_dir):
    up_by_one(db, migrations_dir)
    assert get_db_version(db) == 1
    up_by_one(db, migrations_dir)
    assert get_db_version(db) == 2
    up_by_one(db, migrations_dir)
    assert get_db_version(db) == 3
    with pytest.raises(NoNextVersionError):
        up_by_one(db, migrations_dir)


def test_missing_migration_detected_and_allowed(db, tmp_path, capture):
    for name in ("00001_create_users.sql", "00003_create_tags.sql"):
        (tmp_path / name).write_text(_FILES[name])
    up(db, str(tmp_path))
    assert get_db_version(db) == 3

    (tmp_path / "00002_create_posts.sql").write_text(_FILES["00002_create_posts.sql"])
    with pytest.raises(MigrationError, match="found 1 missing migrations"):
        up(db, str(tmp_path))

    up(db, str(tmp_path), allow_missing=True)
    assert "posts" in _tables(db)
    assert db_migrations_status(db)[2] is True


def test_list_all_db_versions_ascending(db, migrations_dir):
    up(db, migrations_dir)
    assert [m.version for m in list_all_db_versions(db)] == [0, 1, 2, 3]


def test_redo_keeps_version(db, migrations_dir):
    up(db, migrations_dir)
    redo(db, migrations_dir)
    assert get_db_version(db) == 3
    assert "tags" in _tables(db)


def test_reset_rolls_back_everything(db, migrations_dir):
    up(db, migrations_dir)
    reset(db, migrations_dir)
    assert get_db_version(db) == 0
    assert not ({"users", "posts", "tags"} & _tables(db))
    assert db_migrations_status(db) == {0: True}


def test_status_rows(db, migrations_dir, capture):
    up_to(db, migrations_dir, 1)
    rows = status(db, migrations_dir)
    assert [script for _, script in rows] == list(_FILES)
    assert re.fullmatch(r"\w{3} \w{3} [ \d]\d \d\d:\d\d:\d\d \d{4}", rows[0][0])
    assert rows[1][0] == "Pending"
    assert rows[2][0] == "Pending"
    assert "    Applied At                  Migration" in capture.lines


def test_status_no_versioning(db, migrations_dir):
    rows = status(db, migrations_dir, no_versioning=True)
    assert rows == [("no versioning", name) for name in _FILES]


def test_version(db, migrations_dir, capture):
    up_to(db, migrations_dir, 2)
    assert version(db, migrations_dir) == 2
    assert "goose: version 2" in capture.lines
    assert version(db, migrations_dir, no_versioning=True) == 3
    assert "goose: file version 3" in capture.lines


def test_up_no_versioning_skips_version_table(db, migrations_dir, capture):
    up(db, migrations_dir, no_versioning=True)
    tables = _tables(db)
    assert {"users", "posts", "tags"} <= tables
    assert "goose_db_version" not in tables
    assert "goose: up to current file version: 3" in capture.lines


def test_redo_no_versioning(db, migrations_dir):
    up(db, migrations_dir, no_versioning=True)
    redo(db, migrations_dir, no_versioning=True)
    tables = _tables(db)
    assert "tags" in tables
    assert "goose_db_version" not in tables