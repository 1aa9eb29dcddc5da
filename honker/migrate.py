"""Discovery, ordering and registration of migrations, and the current DB version."""

from __future__ import annotations

import glob
import inspect
import os
from typing import Any, Iterable, Optional

from .migration import (
    Migration,
    MigrationFn,
    current_store,
    numeric_component,
    table_name,
)

__all__ = [
    "MAX_VERSION",
    "Migrations",
    "NoMigrationFilesError",
    "NoCurrentVersionError",
    "NoNextVersionError",
    "add_migration",
    "add_migration_no_tx",
    "add_named_migration",
    "add_named_migration_no_tx",
    "registered_migrations",
    "clear_registered_migrations",
    "collect_migrations",
    "sort_and_connect_migrations",
    "version_filter",
    "ensure_db_version",
    "get_db_version",
]

MAX_VERSION = 2**63 - 1

_CODE_EXT = ".py"


class NoMigrationFilesError(LookupError):
    """No migration files have been found."""

    def __init__(self, message: str = "no migration files found") -> None:
        super().__init__(message)


class NoCurrentVersionError(LookupError):
    """The current migration version was not found."""

    def __init__(self, message: str = "no current version found") -> None:
        super().__init__(message)


class NoNextVersionError(LookupError):
    """The next migration version was not found."""

    def __init__(self, message: str = "no next version found") -> None:
        super().__init__(message)


class Migrations(list):
    """A list of migrations, normally sorted by version."""

    def current(self, version: int) -> Migration:
        """Return the migration whose version is ``version``."""
        for migration in self:
            if migration.version == version:
                return migration
        raise NoCurrentVersionError()

    def next(self, version: int) -> Migration:
        """Return the first migration with a version above ``version``."""
        for migration in self:
            if migration.version > version:
                return migration
        raise NoNextVersionError()

    def previous(self, version: int) -> Migration:
        """Return the last migration with a version below ``version``."""
        for migration in reversed(self):
            if migration.version < version:
                return migration
        raise NoNextVersionError()

    def last(self) -> Migration:
        """Return the last migration."""
        if not self:
            raise NoNextVersionError()
        return self[-1]

    def __str__(self) -> str:
        return "".join(f"{migration}\n" for migration in self)


_registered: dict[int, Migration] = {}


def _caller_file() -> str:
    frame = inspect.currentframe()
    try:
        # _caller_file <- add_migration* <- user code
        caller = frame.f_back.f_back if frame is not None and frame.f_back else None
        return caller.f_code.co_filename if caller is not None else ""
    finally:
        del frame


def _register(
    filename: str,
    use_tx: bool,
    up: Optional[MigrationFn],
    down: Optional[MigrationFn],
    up_no_tx: Optional[MigrationFn],
    down_no_tx: Optional[MigrationFn],
) -> None:
    if (up is not None or down is not None) and (
        up_no_tx is not None or down_no_tx is not None
    ):
        raise ValueError("cannot mix tx and non-tx based code migration functions")
    try:
        version = numeric_component(filename)
    except ValueError:
        version = 0
    existing = _registered.get(version)
    if existing is not None:
        raise ValueError(
            f"failed to add migration {filename!r}: version {version} "
            f"conflicts with {existing.source!r}"
        )
    _registered[version] = Migration(
        version=version,
        next=-1,
        previous=-1,
        registered=True,
        source=filename,
        use_tx=use_tx,
        up_fn=up,
        down_fn=down,
        up_fn_no_tx=up_no_tx,
        down_fn_no_tx=down_no_tx,
    )


def add_migration(
    up: Optional[MigrationFn],
    down: Optional[MigrationFn],
    filename: Optional[str] = None,
) -> None:
    """Register functions run inside a transaction; the name defaults to the caller's file."""
    _register(filename if filename is not None else _caller_file(), True, up, down, None, None)


def add_migration_no_tx(
    up: Optional[MigrationFn],
    down: Optional[MigrationFn],
    filename: Optional[str] = None,
) -> None:
    """Register functions run outside a transaction; the name defaults to the caller's file."""
    _register(filename if filename is not None else _caller_file(), False, None, None, up, down)


def add_named_migration(
    filename: str, up: Optional[MigrationFn], down: Optional[MigrationFn]
) -> None:
    """Register functions for ``filename`` that run inside a transaction."""
    _register(filename, True, up, down, None, None)


def add_named_migration_no_tx(
    filename: str, up: Optional[MigrationFn], down: Optional[MigrationFn]
) -> None:
    """Register functions for ``filename`` that run outside a transaction."""
    _register(filename, False, None, None, up, down)


def registered_migrations() -> dict[int, Migration]:
    """Return a copy of the registry of code migrations, keyed by version."""
    return dict(_registered)


def clear_registered_migrations() -> None:
    """Forget every registered code migration."""
    _registered.clear()


def version_filter(version: int, current: int, target: int) -> bool:
    """Return True if ``version`` lies between ``current`` and ``target``."""
    if target > current:
        return current < version <= target
    if target < current:
        return target < version <= current
    return False


def _glob(directory: str, pattern: str) -> list[str]:
    return sorted(glob.glob(os.path.join(glob.escape(directory), pattern)))


def collect_migrations(directory: str, current: int, target: int) -> Migrations:
    """Return the migrations in ``directory`` and the registry, between the two versions."""
    if not os.path.exists(directory):
        raise FileNotFoundError(f"{directory} directory does not exist")

    migrations: list[Migration] = []

    for path in _glob(directory, "*.sql"):
        try:
            version = numeric_component(path)
        except ValueError as err:
            raise ValueError(f"could not parse SQL migration file {path!r}: {err}") from err
        if version_filter(version, current, target):
            migrations.append(Migration(version=version, source=path))

    on_disk: dict[int, Migration] = {}
    for path in _glob(directory, "*" + _CODE_EXT):
        try:
            version = numeric_component(path)
        except ValueError:
            continue
        if path.endswith("_test" + _CODE_EXT):
            continue
        if version_filter(version, current, target):
            on_disk[version] = Migration(version=version, source=path, registered=False)

    for migration in _registered.values():
        try:
            version = numeric_component(migration.source)
        except ValueError as err:
            raise ValueError(
                f"could not parse code migration file {migration.source!r}: {err}"
            ) from err
        if not version_filter(version, current, target):
            continue
        if version in on_disk:
            migrations.append(migration)

    migrations.extend(m for v, m in on_disk.items() if v not in _registered)

    if not migrations:
        raise NoMigrationFilesError()
    return sort_and_connect_migrations(migrations)


def sort_and_connect_migrations(migrations: Iterable[Migration]) -> Migrations:
    """Sort by version and link each migration to its neighbours.

    Raises ValueError when two migrations share a version.
    """
    ordered = Migrations(sorted(migrations, key=lambda m: m.version))
    for earlier, later in zip(ordered, ordered[1:]):
        if earlier.version == later.version:
            raise ValueError(
                f"duplicate version {earlier.version} detected:\n"
                f"{earlier.source}\n{later.source}"
            )
    prev: Optional[Migration] = None
    for migration in ordered:
        if prev is not None:
            prev.next = migration.version
            migration.previous = prev.version
        else:
            migration.previous = -1
        prev = migration
    return ordered


def _commit(db: Any) -> None:
    if hasattr(db, "commit"):
        db.commit()


def _rollback(db: Any) -> None:
    if hasattr(db, "rollback"):
        try:
            db.rollback()
        except Exception:  # keep the original failure
            pass


def _create_version_table(db: Any) -> None:
    store = current_store()
    try:
        store.create_version_table(db, table_name())
        store.insert_version(db, table_name(), 0)
    except Exception:
        _rollback(db)
        raise
    _commit(db)


def ensure_db_version(db: Any) -> int:
    """Return the current database version, creating the version table if needed."""
    try:
        records = current_store().list_migrations(db, table_name())
    except Exception:
        _rollback(db)
        _create_version_table(db)
        return 0
    # Records come newest first; the latest record of each version decides
    # whether it is applied, and the first applied version is the current one.
    skipped: set[int] = set()
    for record in records:
        if record.version_id in skipped:
            continue
        if record.is_applied:
            return record.version_id
        skipped.add(record.version_id)
    raise NoNextVersionError()


def get_db_version(db: Any) -> int:
    """Return the current database version; raises like ensure_db_version."""
    return ensure_db_version(db)