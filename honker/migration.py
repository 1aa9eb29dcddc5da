"""A single migration and the machinery that applies it to a database."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional, Protocol, Sequence

from .dialect import Dialect, Store, new_store
from .sqlparser import Direction, SQLParseError, parse_sql_migration

__all__ = [
    "Migration",
    "MigrationError",
    "numeric_component",
    "truncate_duration",
    "clear_statement",
    "set_logger",
    "nop_logger",
    "table_name",
    "set_table_name",
    "set_dialect",
    "current_store",
    "set_verbose",
    "set_no_color",
]

_SQL_EXT = ".sql"
_CODE_EXT = ".py"
_MAX_VERSION = 2**63 - 1
_MIN_VERSION = -(2**63)

_GRAY = "\033[90m"
_RESET = "\033[00m"


class MigrationError(Exception):
    """Raised when a migration cannot be applied or rolled back."""


class _Logger(Protocol):
    def info(self, msg: str, *args: Any) -> None: ...


def _default_logger() -> logging.Logger:
    logger = logging.Logger("honker")
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s", "%Y/%m/%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


_logger: _Logger = _default_logger()
_table_name = "goose_db_version"
_store: Store = new_store(Dialect.POSTGRES)
_verbose = False
_no_color = False


def set_logger(logger: Optional[_Logger]) -> None:
    """Send package output to ``logger``; ``None`` restores the default stderr logger."""
    global _logger
    _logger = _default_logger() if logger is None else logger


def nop_logger() -> logging.Logger:
    """Return a logger that discards everything."""
    logger = logging.Logger("honker.nop")
    logger.addHandler(logging.NullHandler())
    logger.disabled = True
    return logger


def _log_info(message: str, *args: Any) -> None:
    _logger.info(message, *args)


def _verbose_info(message: str, *args: Any) -> None:
    if not _verbose:
        return
    if _no_color:
        _log_info(message, *args)
    else:
        _log_info(_GRAY + message + _RESET, *args)


def table_name() -> str:
    """Return the name of the version table."""
    return _table_name


def set_table_name(name: str) -> None:
    """Set the name of the version table."""
    global _table_name
    _table_name = name


def set_dialect(name: "Dialect | str") -> None:
    """Select the database dialect; raise ValueError for an unknown one."""
    global _store
    _store = new_store(name)


def current_store() -> Store:
    """Return the store for the selected dialect."""
    return _store


def set_verbose(value: bool) -> None:
    """Turn verbose output on or off."""
    global _verbose
    _verbose = bool(value)


def set_no_color(value: bool) -> None:
    """Turn coloured verbose output off (True) or on (False)."""
    global _no_color
    _no_color = bool(value)


MigrationFn = Callable[[Any], Any]


def _ext(name: str) -> str:
    base = os.path.basename(name)
    idx = base.rfind(".")
    return base[idx:] if idx >= 0 else ""


@dataclass(eq=False)
class Migration:
    """A migration script or a registered pair of migration functions."""

    version: int
    next: int = -1
    previous: int = -1
    source: str = ""
    registered: bool = False
    use_tx: bool = False
    up_fn: Optional[MigrationFn] = field(default=None, repr=False)
    down_fn: Optional[MigrationFn] = field(default=None, repr=False)
    up_fn_no_tx: Optional[MigrationFn] = field(default=None, repr=False)
    down_fn_no_tx: Optional[MigrationFn] = field(default=None, repr=False)
    no_versioning: bool = False

    def __str__(self) -> str:
        return self.source

    def up(self, db: Any) -> None:
        """Apply this migration."""
        self._run(db, True)

    def down(self, db: Any) -> None:
        """Roll this migration back."""
        self._run(db, False)

    def _run(self, db: Any, direction: bool) -> None:
        ext = _ext(self.source)
        base = os.path.basename(self.source)
        if ext == _SQL_EXT:
            try:
                with open(self.source, encoding="utf-8") as handle:
                    try:
                        statements, use_tx = parse_sql_migration(
                            handle, Direction.from_bool(direction), _verbose
                        )
                    except SQLParseError as err:
                        raise MigrationError(
                            f"ERROR {base}: failed to parse SQL migration file: {err}"
                        ) from err
            except OSError as err:
                raise MigrationError(
                    f"ERROR {base}: failed to open SQL migration file: {err}"
                ) from err

            start = time.perf_counter()
            try:
                _run_sql_migration(
                    db, statements, use_tx, self.version, direction, self.no_versioning
                )
            except Exception as err:
                raise MigrationError(
                    f"ERROR {base}: failed to run SQL migration: {err}"
                ) from err
            finish = _format_duration(
                truncate_duration(timedelta(seconds=time.perf_counter() - start))
            )
            if statements:
                _log_info("OK   %s (%s)", base, finish)
            else:
                _log_info("EMPTY %s (%s)", base, finish)

        elif ext == _CODE_EXT:
            if not self.registered:
                raise MigrationError(
                    f"ERROR {self.source}: failed to run code migration: migration "
                    "functions must be registered before they can be run"
                )
            start = time.perf_counter()
            if self.use_tx:
                fn = self.up_fn if direction else self.down_fn
                try:
                    _run_code_migration(
                        db, fn, self.version, direction, not self.no_versioning
                    )
                except Exception as err:
                    raise MigrationError(f"ERROR code migration: {base!r}: {err}") from err
            else:
                fn = self.up_fn_no_tx if direction else self.down_fn_no_tx
                try:
                    _run_code_migration_no_tx(
                        db, fn, self.version, direction, not self.no_versioning
                    )
                except Exception as err:
                    raise MigrationError(
                        f"ERROR code migration no tx: {base!r}: {err}"
                    ) from err
            finish = _format_duration(
                truncate_duration(timedelta(seconds=time.perf_counter() - start))
            )
            if fn is not None:
                _log_info("OK   %s (%s)", base, finish)
            else:
                _log_info("EMPTY %s (%s)", base, finish)


def _exec(conn: Any, query: str, params: Sequence[Any] = ()) -> None:
    if hasattr(conn, "cursor"):
        cursor = conn.cursor()
        try:
            cursor.execute(query, tuple(params))
        finally:
            cursor.close()
    else:
        conn.execute(query, tuple(params))


def _commit(db: Any) -> None:
    if hasattr(db, "commit"):
        db.commit()


def _rollback(db: Any) -> None:
    if hasattr(db, "rollback"):
        try:
            db.rollback()
        except Exception:  # the original failure is what matters
            pass


def _record_version(db: Any, version: int, direction: bool) -> None:
    if direction:
        _store.insert_version(db, table_name(), version)
    else:
        _store.delete_version(db, table_name(), version)


def _run_sql_migration(
    db: Any,
    statements: list[str],
    use_tx: bool,
    version: int,
    direction: bool,
    no_versioning: bool,
) -> None:
    if use_tx:
        _verbose_info("Begin transaction")
        for query in statements:
            _verbose_info("Executing statement: %s", clear_statement(query))
            try:
                _exec(db, query)
            except Exception as err:
                _verbose_info("Rollback transaction")
                _rollback(db)
                raise MigrationError(
                    f"failed to execute SQL query {clear_statement(query)!r}: {err}"
                ) from err
        if not no_versioning:
            try:
                _record_version(db, version, direction)
            except Exception as err:
                _verbose_info("Rollback transaction")
                _rollback(db)
                action = "insert new" if direction else "delete"
                raise MigrationError(f"failed to {action} goose version: {err}") from err
        _verbose_info("Commit transaction")
        try:
            _commit(db)
        except Exception as err:
            raise MigrationError(f"failed to commit transaction: {err}") from err
        return

    for query in statements:
        _verbose_info("Executing statement: %s", clear_statement(query))
        try:
            _exec(db, query)
            _commit(db)
        except Exception as err:
            raise MigrationError(
                f"failed to execute SQL query {clear_statement(query)!r}: {err}"
            ) from err
    if not no_versioning:
        try:
            _record_version(db, version, direction)
            _commit(db)
        except Exception as err:
            action = "insert new" if direction else "delete"
            raise MigrationError(f"failed to {action} goose version: {err}") from err


def _run_code_migration(
    db: Any,
    fn: Optional[MigrationFn],
    version: int,
    direction: bool,
    record_version: bool,
) -> None:
    if fn is None and not record_version:
        return
    if fn is not None:
        try:
            fn(db)
        except Exception as err:
            _rollback(db)
            raise MigrationError(f"failed to run code migration: {err}") from err
    if record_version:
        try:
            _record_version(db, version, direction)
        except Exception as err:
            _rollback(db)
            raise MigrationError(f"failed to update version: {err}") from err
    try:
        _commit(db)
    except Exception as err:
        raise MigrationError(f"failed to commit transaction: {err}") from err


def _run_code_migration_no_tx(
    db: Any,
    fn: Optional[MigrationFn],
    version: int,
    direction: bool,
    record_version: bool,
) -> None:
    if fn is not None:
        try:
            fn(db)
            _commit(db)
        except Exception as err:
            raise MigrationError(f"failed to run code migration: {err}") from err
    if record_version:
        _record_version(db, version, direction)
        _commit(db)


_VERSION_PREFIX = re.compile(r"[+-]?[0-9]+")


def numeric_component(name: str) -> int:
    """Return the version number of a file named ``NNN_description.ext``.

    Raises ValueError if the name is not a migration file name.
    """
    base = os.path.basename(name)
    if _ext(base) not in (_SQL_EXT, _CODE_EXT):
        raise ValueError("not a recognized migration file type")
    idx = base.find("_")
    if idx < 0:
        raise ValueError("no filename separator '_' found")
    prefix = base[:idx]
    if not _VERSION_PREFIX.fullmatch(prefix):
        raise ValueError(f"invalid version {prefix!r}: invalid syntax")
    number = int(prefix)
    if not _MIN_VERSION <= number <= _MAX_VERSION:
        raise ValueError(f"invalid version {prefix!r}: value out of range")
    if number <= 0:
        raise ValueError("migration IDs must be greater than zero")
    return number


_TRUNCATE_UNITS = (
    timedelta(seconds=1),
    timedelta(milliseconds=1),
    timedelta(microseconds=1),
)
_MICROSECOND = timedelta(microseconds=1)


def _round(duration: timedelta, step: timedelta) -> timedelta:
    step_us = step // _MICROSECOND
    if step_us <= 0:
        return duration
    us = duration // _MICROSECOND
    quotient, remainder = divmod(abs(us), step_us)
    if remainder + remainder >= step_us:
        quotient += 1
    rounded = quotient * step_us
    return timedelta(microseconds=rounded if us >= 0 else -rounded)


def truncate_duration(duration: timedelta) -> timedelta:
    """Round a duration to about two decimal places of its largest unit."""
    for unit in _TRUNCATE_UNITS:
        if duration > unit:
            return _round(duration, unit / 100)
    return duration


def _trim(value: float) -> str:
    return f"{value:.6f}".rstrip("0").rstrip(".")


def _format_duration(duration: timedelta) -> str:
    us = duration // _MICROSECOND
    if us == 0:
        return "0s"
    magnitude = abs(us)
    if magnitude < 1000:
        return f"{us}µs"
    if magnitude < 1_000_000:
        return f"{_trim(us / 1000)}ms"
    return f"{_trim(us / 1_000_000)}s"


_SQL_COMMENTS = re.compile(r"^--.*$[\r\n]*", re.MULTILINE)
_EMPTY_LINES = re.compile(r"^$[\r\n]*", re.MULTILINE)


def clear_statement(statement: str) -> str:
    """Strip comment lines and empty lines from a statement for display."""
    statement = _SQL_COMMENTS.sub("", statement)
    return _EMPTY_LINES.sub("", statement)