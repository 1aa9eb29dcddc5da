# honker

honker keeps a database schema in step with a directory of migration
files. Every migration has a positive integer version, migrations are
applied in version order, and each application or rollback is recorded
in a version table (`goose_db_version` unless another name is set with
`migration.set_table_name`).

## Migration files

A SQL migration is named `<version>_<description>.sql`, for example
`00001_create_users.sql` or `20230601120000_add_index.sql`.
`migration.numeric_component` extracts the version from such a name and
raises `ValueError` for names that are not migration files.

The file is divided into an up section and a down section by annotation
comments:

```sql
-- +goose Up
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name TEXT
);

-- +goose Down
DROP TABLE users;
```

Statements end at a line whose last word before any `--` comment ends in
a semicolon. Statements containing semicolons of their own, such as
function bodies, are wrapped in `-- +goose StatementBegin` and
`-- +goose StatementEnd`. A file containing the line
`-- +goose NO TRANSACTION` is run statement by statement with a commit
after each; otherwise all statements and the version-table update are
executed together and committed once, with a rollback on failure.
Malformed files (no `-- +goose Up`, a down section first, an unclosed
`StatementBegin`, an unterminated statement) raise
`sqlparser.SQLParseError`.

## Running migrations

Every command takes a database connection that you open yourself: a
DB-API connection (anything with `cursor()`), or any object with an
`execute` method. `commit` and `rollback` are called when the object has
them.

```python
import sqlite3

from honker import commands, migration

migration.set_dialect("sqlite3")

db = sqlite3.connect("app.db")
commands.up(db, "migrations")               # apply everything pending
rows = commands.status(db, "migrations")    # [(applied at, file name), ...]
current = commands.version(db, "migrations")
commands.redo(db, "migrations")             # roll back and reapply the latest
commands.reset(db, "migrations")            # roll back every applied migration
```

- `commands.up_to(db, directory, version)` stops at the given version.
- `commands.up_by_one(db, directory)` applies one migration and raises
  `migrate.NoNextVersionError` once nothing is left to apply.
- Migrations older than the newest recorded version that were never
  applied are refused with `migration.MigrationError` unless
  `allow_missing=True` is passed to `up`, `up_to` or `up_by_one`.
- `no_versioning=True` (on `up`, `up_to`, `up_by_one`, `redo`, `status`
  and `version`) applies migrations without reading or writing the
  version table.
- `status` and `version` log their results as well as returning them.

The version table is created on first use. The supported dialects are
`postgres` (the default), `mysql`, `sqlite3`, `sqlserver`, `redshift`,
`tidb`, `clickhouse` and `vertica`; `dialect.new_store` and the querier
classes in `honker.dialect` expose the SQL used for each.

Lower-level helpers live in `honker.migrate`: `collect_migrations`,
`sort_and_connect_migrations` (raises `ValueError` on duplicate
versions), `ensure_db_version`, `get_db_version`, and the `Migrations`
list with `current`, `next`, `previous` and `last`.

## Migrations in code

A migration can also be a pair of Python functions, each called with
the connection:

```python
from honker import migrate

def create_users(db):
    db.execute("CREATE TABLE users (id INTEGER PRIMARY KEY)")

def drop_users(db):
    db.execute("DROP TABLE users")

migrate.add_named_migration("00002_users.py", create_users, drop_users)
```

A registered migration is only picked up when a `.py` file with the same
version exists in the migration directory. `add_migration` and
`add_migration_no_tx` take the file name from the caller when it is not
given; the `_no_tx` variants commit after the function instead of
treating function and version update as one unit. Either function may be
`None`. Registering the same version twice raises `ValueError`;
`migrate.registered_migrations` and `migrate.clear_registered_migrations`
inspect and empty the registry. A `.py` file in the directory with no
registered functions raises `MigrationError` when run.

## Logging

Output goes to a logger with an `info(message, *args)` method, by
default one that writes to stderr. Replace it with
`migration.set_logger`, silence it with
`migration.set_logger(migration.nop_logger())`, and restore the default
with `migration.set_logger(None)`. `migration.set_verbose(True)` traces
each statement; `migration.set_no_color(True)` (or `no_color=True` on
the `up` commands) turns off grey colouring of that trace.

## Parsing and statistics

`sqlparser.parse_sql_migration(source, direction)` returns the
statements for `sqlparser.Direction.UP` or `DOWN` and whether the file
runs in a transaction.

`stats.gather_stats(stats.walk_files("migrations/00001_a.sql", ...))`
returns a `stats.Stats` per file: version, transaction mode and the
number of up and down statements. For `.py` files the counts come from
a top-level `add_migration(up, down)` or `add_migration_no_tx(up, down)`
call, each argument counting 1 unless it is `None`.

## Configuration

`cfg.env_list()` reports `GOOSE_DRIVER`, `GOOSE_DBSTRING`,
`GOOSE_MIGRATION_DIR` (default `.`) and `NO_COLOR` (default `false`).
`cfg.env_or` reads one variable with a fallback.

## What honker does not do

honker is a library only: it has no command-line program, it does not
open database connections or load drivers (the environment settings
above are reported, not acted on), and it does not create new migration
files for you.