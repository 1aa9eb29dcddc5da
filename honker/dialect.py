"""Database dialects and the store that manages the migration version table."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional, Sequence

__all__ = [
    "Dialect",
    "Querier",
    "Postgres",
    "Mysql",
    "Sqlite3",
    "Sqlserver",
    "Redshift",
    "Tidb",
    "Clickhouse",
    "Vertica",
    "MigrationRow",
    "ListMigrationsResult",
    "Store",
    "new_store",
]


class Dialect(str, enum.Enum):
    """Supported database dialects."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE3 = "sqlite3"
    SQLSERVER = "sqlserver"
    REDSHIFT = "redshift"
    TIDB = "tidb"
    CLICKHOUSE = "clickhouse"
    VERTICA = "vertica"

    def __str__(self) -> str:
        return self.value


class Querier(abc.ABC):
    """Builds the dialect-specific SQL used to manage the version table."""

    @abc.abstractmethod
    def create_table(self, table_name: str) -> str:
        """Return the query that creates the version table."""

    @abc.abstractmethod
    def insert_version(self, table_name: str) -> str:
        """Return the query that inserts a version (version_id, is_applied)."""

    @abc.abstractmethod
    def delete_version(self, table_name: str) -> str:
        """Return the query that deletes a version."""

    @abc.abstractmethod
    def get_migration_by_version(self, table_name: str) -> str:
        """Return the query selecting (tstamp, is_applied) for one version."""

    @abc.abstractmethod
    def list_migrations(self, table_name: str) -> str:
        """Return the query selecting (version_id, is_applied), newest id first."""


_VERSION_COLUMNS = ("version_id bigint NOT NULL", "is_applied boolean NOT NULL")
_SERIAL_COLUMNS = (
    "id serial NOT NULL",
    *_VERSION_COLUMNS,
    "tstamp timestamp NULL default now()",
    "PRIMARY KEY(id)",
)


class _TemplateQuerier(Querier):
    """A querier whose statements are filled in from class-level templates."""

    columns: ClassVar[tuple[str, ...]] = ()
    p1: ClassVar[str] = "?"
    p2: ClassVar[str] = "?"
    create_template: ClassVar[str] = "CREATE TABLE {table} (\n\t\t{columns}\n\t)"
    insert_template: ClassVar[str] = (
        "INSERT INTO {table} (version_id, is_applied) VALUES ({p1}, {p2})"
    )
    delete_template: ClassVar[str] = "DELETE FROM {table} WHERE version_id={p1}"
    get_template: ClassVar[str] = (
        "SELECT tstamp, is_applied FROM {table} "
        "WHERE version_id={p1} ORDER BY tstamp DESC LIMIT 1"
    )
    list_template: ClassVar[str] = (
        "SELECT version_id, is_applied from {table} ORDER BY id DESC"
    )

    def _render(self, template: str, table_name: str) -> str:
        return template.format(
            table=table_name,
            p1=self.p1,
            p2=self.p2,
            columns=",\n\t\t".join(self.columns),
        )

    def create_table(self, table_name: str) -> str:
        return self._render(self.create_template, table_name)

    def insert_version(self, table_name: str) -> str:
        return self._render(self.insert_template, table_name)

    def delete_version(self, table_name: str) -> str:
        return self._render(self.delete_template, table_name)

    def get_migration_by_version(self, table_name: str) -> str:
        return self._render(self.get_template, table_name)

    def list_migrations(self, table_name: str) -> str:
        return self._render(self.list_template, table_name)


class Postgres(_TemplateQuerier):
    columns = _SERIAL_COLUMNS
    p1, p2 = "$1", "$2"


class Mysql(_TemplateQuerier):
    columns = _SERIAL_COLUMNS


class Sqlite3(_TemplateQuerier):
    columns = (
        "id INTEGER PRIMARY KEY AUTOINCREMENT",
        "version_id INTEGER NOT NULL",
        "is_applied INTEGER NOT NULL",
        "tstamp TIMESTAMP DEFAULT (datetime('now'))",
    )


class Sqlserver(_TemplateQuerier):
    columns = (
        "id INT NOT NULL IDENTITY(1,1) PRIMARY KEY",
        "version_id BIGINT NOT NULL",
        "is_applied BIT NOT NULL",
        "tstamp DATETIME NULL DEFAULT CURRENT_TIMESTAMP",
    )
    p1, p2 = "@p1", "@p2"
    get_template = """
WITH Migrations AS
(
	SELECT tstamp, is_applied,
	ROW_NUMBER() OVER (ORDER BY tstamp) AS 'RowNumber'
	FROM {table}
	WHERE version_id={p1}
)
SELECT tstamp, is_applied
FROM Migrations
WHERE RowNumber BETWEEN 1 AND 2
ORDER BY tstamp DESC
"""
    list_template = "SELECT version_id, is_applied FROM {table} ORDER BY id DESC"


class Redshift(_TemplateQuerier):
    columns = (
        "id integer NOT NULL identity(1, 1)",
        *_VERSION_COLUMNS,
        "tstamp timestamp NULL default sysdate",
        "PRIMARY KEY(id)",
    )
    p1, p2 = "$1", "$2"


class Tidb(_TemplateQuerier):
    columns = (
        "id BIGINT UNSIGNED NOT NULL AUTO_INCREMENT UNIQUE",
        *_SERIAL_COLUMNS[1:],
    )


class Clickhouse(_TemplateQuerier):
    p1, p2 = "$1", "$2"
    create_template = """CREATE TABLE IF NOT EXISTS {table} (
		version_id Int64,
		is_applied UInt8,
		date Date default now(),
		tstamp DateTime default now()
	  )
	  ENGINE = MergeTree()
		ORDER BY (date)"""
    delete_template = (
        "ALTER TABLE {table} DELETE WHERE version_id = {p1} SETTINGS mutations_sync = 2"
    )
    get_template = (
        "SELECT tstamp, is_applied FROM {table} "
        "WHERE version_id = {p1} ORDER BY tstamp DESC LIMIT 1"
    )
    list_template = (
        "SELECT version_id, is_applied FROM {table} ORDER BY version_id DESC"
    )


class Vertica(_TemplateQuerier):
    columns = ("id identity(1,1) NOT NULL", *_SERIAL_COLUMNS[1:])


_QUERIERS: dict[Dialect, type[Querier]] = {
    Dialect.POSTGRES: Postgres,
    Dialect.MYSQL: Mysql,
    Dialect.SQLITE3: Sqlite3,
    Dialect.SQLSERVER: Sqlserver,
    Dialect.REDSHIFT: Redshift,
    Dialect.TIDB: Tidb,
    Dialect.CLICKHOUSE: Clickhouse,
    Dialect.VERTICA: Vertica,
}


@dataclass(frozen=True)
class MigrationRow:
    """The latest record of one version in the version table."""

    is_applied: bool
    timestamp: Optional[datetime]


@dataclass(frozen=True)
class ListMigrationsResult:
    """One record of the version table."""

    version_id: int
    is_applied: bool


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8")
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"cannot convert {type(value).__name__} to a timestamp")


def _fetch(conn: Any, query: str, params: Sequence[Any] = ()) -> list[tuple]:
    """Run ``query`` on a DB-API connection (or anything with ``execute``)."""
    if hasattr(conn, "cursor"):
        cursor = conn.cursor()
        try:
            cursor.execute(query, tuple(params))
            if cursor.description is None:
                return []
            return list(cursor.fetchall())
        finally:
            cursor.close()
    result = conn.execute(query, tuple(params))
    if result is None or getattr(result, "description", None) is None:
        return []
    return list(result.fetchall())


@dataclass
class Store:
    """Reads and writes the version table using a dialect's queries.

    ``conn`` is a DB-API connection, or any object with an ``execute``
    method. Errors raised by the driver are passed through unchanged.
    """

    querier: Querier

    def create_version_table(self, conn: Any, table_name: str) -> None:
        """Create the version table."""
        _fetch(conn, self.querier.create_table(table_name))

    def insert_version(self, conn: Any, table_name: str, version: int) -> None:
        """Record ``version`` as applied."""
        _fetch(conn, self.querier.insert_version(table_name), (version, True))

    def delete_version(self, conn: Any, table_name: str, version: int) -> None:
        """Remove every record of ``version``."""
        _fetch(conn, self.querier.delete_version(table_name), (version,))

    def get_migration(
        self, conn: Any, table_name: str, version: int
    ) -> Optional[MigrationRow]:
        """Return the latest record for ``version``, or None if there is none."""
        rows = _fetch(conn, self.querier.get_migration_by_version(table_name), (version,))
        if not rows:
            return None
        timestamp, is_applied = rows[0][0], rows[0][1]
        return MigrationRow(is_applied=bool(is_applied), timestamp=_to_datetime(timestamp))

    def list_migrations(self, conn: Any, table_name: str) -> list[ListMigrationsResult]:
        """Return all records, in descending order by id."""
        rows = _fetch(conn, self.querier.list_migrations(table_name))
        return [
            ListMigrationsResult(version_id=int(version), is_applied=bool(applied))
            for version, applied in rows
        ]


def new_store(dialect: "Dialect | str") -> Store:
    """Return a store for ``dialect``; raise ValueError for an unknown one."""
    try:
        key = Dialect(dialect)
    except ValueError:
        raise ValueError(f"unknown querier dialect: {dialect}") from None
    return Store(querier=_QUERIERS[key]())