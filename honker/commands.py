"""High-level commands: up, redo, reset, status and version."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from .migrate import (
    MAX_VERSION,
    Migrations,
    NoNextVersionError,
    collect_migrations,
    ensure_db_version,
    get_db_version,
    sort_and_connect_migrations,
)
from .migration import (
    Migration,
    MigrationError,
    _log_info,
    current_store,
    set_no_color,
    table_name,
)

__all__ = [
    "up_to",
    "up",
    "up_by_one",
    "redo",
    "reset",
    "status",
    "version",
    "list_all_db_versions",
    "find_missing_migrations",
    "db_migrations_status",
]

_MIN_VERSION = 0
_PENDING = "Pending"
_STATUS_HEADER = "    Applied At                  Migration"
_STATUS_RULE = "    ======================================="


def _apply_no_color(no_color: Optional[bool]) -> None:
    if no_color is not None:
        set_no_color(no_color)


def _up_to_no_versioning(db: Any, migrations: Migrations, target: int) -> None:
    final_version = 0
    for migration in migrations:
        if migration.version > target:
            break
        migration.no_versioning = True
        migration.up(db)
        final_version = migration.version
    _log_info("goose: up to current file version: %d", final_version)


def _up_to(
    db: Any,
    directory: str,
    target: int,
    *,
    allow_missing: bool,
    no_versioning: bool,
    apply_up_by_one: bool,
) -> None:
    found = collect_migrations(directory, _MIN_VERSION, target)

    if no_versioning:
        if not found:
            return
        if apply_up_by_one:
            # Without a version table, up-by-one keeps re-applying the first migration.
            target = found[0].version
        _up_to_no_versioning(db, found, target)
        return

    ensure_db_version(db)
    db_migrations = list_all_db_versions(db)
    db_max_version = db_migrations[-1].version
    applied_in_db = {m.version for m in db_migrations}

    missing = find_missing_migrations(db_migrations, found, db_max_version)
    if missing and not allow_missing:
        collected = "\n\t".join(f"version {m.version}: {m.source}" for m in missing)
        raise MigrationError(
            f"error: found {len(missing)} missing migrations:\n\t{collected}"
        )

    to_apply: list[Migration] = list(missing) if allow_missing else []
    # Only versions above the database maximum are new; those below it are
    # handled as missing above.
    to_apply.extend(
        m
        for m in found
        if m.version not in applied_in_db and db_max_version < m.version <= target
    )

    current = 0
    for migration in to_apply:
        migration.up(db)
        if apply_up_by_one:
            return
        current = migration.version

    if not to_apply:
        current = get_db_version(db)
        _log_info("goose: no migrations to run. current version: %d", current)
    else:
        _log_info("goose: successfully migrated database to version: %d", current)

    if apply_up_by_one:
        raise NoNextVersionError()


def up_to(
    db: Any,
    directory: str,
    version: int,
    *,
    allow_missing: bool = False,
    no_versioning: bool = False,
    no_color: Optional[bool] = None,
) -> None:
    """Apply pending migrations up to and including ``version``."""
    _apply_no_color(no_color)
    _up_to(
        db,
        directory,
        version,
        allow_missing=allow_missing,
        no_versioning=no_versioning,
        apply_up_by_one=False,
    )


def up(
    db: Any,
    directory: str,
    *,
    allow_missing: bool = False,
    no_versioning: bool = False,
    no_color: Optional[bool] = None,
) -> None:
    """Apply all available migrations."""
    up_to(
        db,
        directory,
        MAX_VERSION,
        allow_missing=allow_missing,
        no_versioning=no_versioning,
        no_color=no_color,
    )


def up_by_one(
    db: Any,
    directory: str,
    *,
    allow_missing: bool = False,
    no_versioning: bool = False,
    no_color: Optional[bool] = None,
) -> None:
    """Apply the next pending migration.

    Raises NoNextVersionError when there is nothing left to apply.
    """
    _apply_no_color(no_color)
    _up_to(
        db,
        directory,
        MAX_VERSION,
        allow_missing=allow_missing,
        no_versioning=no_versioning,
        apply_up_by_one=True,
    )


def redo(db: Any, directory: str, *, no_versioning: bool = False) -> None:
    """Roll back the most recently applied migration, then apply it again."""
    migrations = collect_migrations(directory, _MIN_VERSION, MAX_VERSION)
    if no_versioning:
        if not migrations:
            return
        current_version = migrations[-1].version
    else:
        current_version = get_db_version(db)

    current = migrations.current(current_version)
    current.no_versioning = no_versioning
    current.down(db)
    current.up(db)


def reset(db: Any, directory: str) -> None:
    """Roll back every applied migration, newest first."""
    migrations = collect_migrations(directory, _MIN_VERSION, MAX_VERSION)
    statuses = db_migrations_status(db)
    for migration in reversed(migrations):
        if not statuses.get(migration.version, False):
            continue
        try:
            migration.down(db)
        except Exception as err:
            raise MigrationError(f"failed to db-down: {err}") from err


def db_migrations_status(db: Any) -> dict[int, bool]:
    """Map each recorded version to whether its latest record says it is applied."""
    records = current_store().list_migrations(db, table_name())
    results: dict[int, bool] = {}
    for record in records:
        results.setdefault(record.version_id, record.is_applied)
    return results


def _ansic(moment: datetime) -> str:
    return f"{moment:%a %b} {moment.day:>2} {moment:%H:%M:%S %Y}"


def _log_status_row(applied_at: str, script: str) -> None:
    _log_info("    %-24s -- %s", applied_at, script)


def status(
    db: Any, directory: str, *, no_versioning: bool = False
) -> list[tuple[str, str]]:
    """Log and return (applied at, script name) for every migration."""
    import os

    migrations = collect_migrations(directory, _MIN_VERSION, MAX_VERSION)
    rows: list[tuple[str, str]] = []

    if no_versioning:
        _log_info(_STATUS_HEADER)
        _log_info(_STATUS_RULE)
        for migration in migrations:
            row = ("no versioning", os.path.basename(migration.source))
            _log_status_row(*row)
            rows.append(row)
        return rows

    # The version table must exist, even on a pristine database.
    ensure_db_version(db)

    _log_info(_STATUS_HEADER)
    _log_info(_STATUS_RULE)
    store = current_store()
    for migration in migrations:
        record = store.get_migration(db, table_name(), migration.version)
        applied_at = _PENDING
        if record is not None and record.is_applied and record.timestamp is not None:
            applied_at = _ansic(record.timestamp)
        row = (applied_at, os.path.basename(migration.source))
        _log_status_row(*row)
        rows.append(row)
    return rows


def version(db: Any, directory: str, *, no_versioning: bool = False) -> int:
    """Log and return the current version of the database (or of the files)."""
    if no_versioning:
        migrations = collect_migrations(directory, _MIN_VERSION, MAX_VERSION)
        current = migrations[-1].version if migrations else 0
        _log_info("goose: file version %d", current)
        return current
    current = get_db_version(db)
    _log_info("goose: version %d", current)
    return current


def list_all_db_versions(db: Any) -> Migrations:
    """Return every recorded version as a migration, in ascending version order."""
    records = current_store().list_migrations(db, table_name())
    migrations = [Migration(version=record.version_id) for record in records]
    return Migrations(sorted(migrations, key=lambda m: m.version))


def find_missing_migrations(
    known: list[Migration], new: list[Migration], db_max_version: int
) -> Migrations:
    """Return migrations not yet recorded whose version is below ``db_max_version``."""
    existing = {m.version for m in known}
    missing = [
        m for m in new if m.version not in existing and m.version < db_max_version
    ]
    return Migrations(sorted(missing, key=lambda m: m.version))


# Kept importable for callers that build lists by hand.
_ = sort_and_connect_migrations