import sqlite3

import pytest

from honker.migrate import (
    MAX_VERSION,
    Migrations,
    NoCurrentVersionError,
    NoMigrationFilesError,
    NoNextVersionError,
    add_migration,
    add_migration_no_tx,
    add_named_migration,
    add_named_migration_no_tx,
    clear_registered_migrations,
    collect_migrations,
    ensure_db_version,
    get_db_version,
    registered_migrations,
    sort_and_connect_migrations,
    version_filter,
)
from honker.migration import Migration, set_dialect, table_name


@pytest.fixture(autouse=True)
def _clean_registry():
    clear_registered_migrations()
    yield
    clear_registered_migrations()


@pytest.fixture
def sqlite_db():
    set_dialect("sqlite3")
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()
    set_dialect("postgres")


def new_migration(version, source="test"):
    return Migration(version=version, previous=-1, next=-1, source=source)


def test_migration_sort():
    ms = [
        new_migration(20120000),
        new_migration(20128000),
        new_migration(20129000),
        new_migration(20127000),
    ]
    ms = sort_and_connect_migrations(ms)
    expected = [20120000, 20127000, 20128000, 20129000]
    assert [m.version for m in ms] == expected
    assert [m.previous for m in ms] == [-1, 20120000, 20127000, 20128000]
    assert [m.next for m in ms] == [20127000, 20128000, 20129000, -1]


def test_sort_rejects_duplicates():
    with pytest.raises(ValueError, match="duplicate version 3"):
        sort_and_connect_migrations([new_migration(3, "a"), new_migration(3, "b")])


def _sample():
    return sort_and_connect_migrations([new_migration(v, f"{v}.sql") for v in (1, 3, 5)])


def test_current():
    ms = _sample()
    assert ms.current(3).version == 3
    with pytest.raises(NoCurrentVersionError):
        ms.current(4)


def test_next_and_previous():
    ms = _sample()
    assert ms.next(3).version == 5
    assert ms.next(0).version == 1
    with pytest.raises(NoNextVersionError):
        ms.next(5)
    assert ms.previous(3).version == 1
    assert ms.previous(100).version == 5
    with pytest.raises(NoNextVersionError):
        ms.previous(1)


def test_last():
    assert _sample().last().version == 5
    with pytest.raises(NoNextVersionError):
        Migrations().last()


def test_str_lists_sources():
    assert str(_sample()) == "1.sql\n3.sql\n5.sql\n"


@pytest.mark.parametrize(
    "version,current,target,expected",
    [
        (2, 1, 3, True),
        (3, 1, 3, True),
        (1, 1, 3, False),
        (4, 1, 3, False),
        (3, 3, 1, True),
        (2, 3, 1, True),
        (1, 3, 1, False),
        (2, 2, 2, False),
    ],
)
def test_version_filter(version, current, target, expected):
    assert version_filter(version, current, target) is expected


@pytest.fixture
def migrations_dir(tmp_path):
    for name in ("00001_a.sql", "00002_b.sql", "00003_c.py", "notes.txt", "00004_x_test.py", "helper.py"):
        (tmp_path / name).write_text("-- +goose Up\n")
    return tmp_path


def test_collect_all(migrations_dir):
    ms = collect_migrations(str(migrations_dir), 0, MAX_VERSION)
    assert [m.version for m in ms] == [1, 2, 3]
    assert ms[2].registered is False
    assert ms[0].next == 2 and ms[2].previous == 2


def test_collect_filters_up_and_down(migrations_dir):
    up = collect_migrations(str(migrations_dir), 1, 2)
    assert [m.version for m in up] == [2]
    down = collect_migrations(str(migrations_dir), 3, 1)
    assert [m.version for m in down] == [2, 3]


def test_collect_empty_dir(tmp_path):
    with pytest.raises(NoMigrationFilesError):
        collect_migrations(str(tmp_path), 0, MAX_VERSION)


def test_collect_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError, match="does not exist"):
        collect_migrations(str(tmp_path / "nope"), 0, MAX_VERSION)


def test_collect_bad_sql_name(tmp_path):
    (tmp_path / "abc_x.sql").write_text("")
    with pytest.raises(ValueError, match="could not parse SQL migration file"):
        collect_migrations(str(tmp_path), 0, MAX_VERSION)


def test_collect_uses_registered(migrations_dir):
    def up(db):
        return None

    add_named_migration(str(migrations_dir / "00003_c.py"), up, None)
    ms = collect_migrations(str(migrations_dir), 0, MAX_VERSION)
    assert ms[2].registered is True
    assert ms[2].use_tx is True
    assert ms[2].up_fn is up


def test_registered_without_file_is_ignored(migrations_dir):
    add_named_migration("00009_elsewhere.py", None, None)
    ms = collect_migrations(str(migrations_dir), 0, MAX_VERSION)
    assert [m.version for m in ms] == [1, 2, 3]


def test_register_conflict():
    add_named_migration("00005_a.py", None, None)
    with pytest.raises(ValueError, match="conflicts with"):
        add_named_migration_no_tx("00005_b.py", None, None)


def test_add_migration_variants():
    def up(db):
        return None

    add_migration(up, None, filename="00007_x.py")
    add_migration_no_tx(None, up, filename="00008_y.py")
    registry = registered_migrations()
    assert sorted(registry) == [7, 8]
    assert registry[7].use_tx is True and registry[7].up_fn is up
    assert registry[8].use_tx is False and registry[8].down_fn_no_tx is up


def test_clear_registered():
    add_named_migration("00005_a.py", None, None)
    clear_registered_migrations()
    assert registered_migrations() == {}


def _insert(conn, version, applied):
    conn.execute(
        f"INSERT INTO {table_name()} (version_id, is_applied) VALUES (?, ?)",
        (version, applied),
    )
    conn.commit()


def test_ensure_creates_table(sqlite_db):
    assert ensure_db_version(sqlite_db) == 0
    rows = sqlite_db.execute(f"SELECT version_id, is_applied FROM {table_name()}").fetchall()
    assert rows == [(0, 1)]
    assert ensure_db_version(sqlite_db) == 0


def test_ensure_returns_latest_applied(sqlite_db):
    ensure_db_version(sqlite_db)
    _insert(sqlite_db, 5, 1)
    assert ensure_db_version(sqlite_db) == 5
    _insert(sqlite_db, 5, 0)
    assert get_db_version(sqlite_db) == 0


def test_ensure_no_applied_version(sqlite_db):
    ensure_db_version(sqlite_db)
    sqlite_db.execute(f"DELETE FROM {table_name()}")
    sqlite_db.commit()
    _insert(sqlite_db, 2, 0)
    with pytest.raises(NoNextVersionError):
        get_db_version(sqlite_db)