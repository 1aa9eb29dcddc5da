"""Statistics about migration files: version, transaction mode and statement counts."""

from __future__ import annotations

import ast
import os
from dataclasses import dataclass
from typing import Iterable, Iterator, Union

from .migration import numeric_component
from .sqlparser import Direction, parse_sql_migration

__all__ = [
    "Stats",
    "CodeMigration",
    "SqlMigration",
    "parse_code_migration",
    "parse_sql_file",
    "walk_files",
    "gather_stats",
]

_SQL_EXT = ".sql"
_CODE_EXT = ".py"

_REGISTER = "add_migration"
_REGISTER_NO_TX = "add_migration_no_tx"
_NONE_NAME = "None"


@dataclass(frozen=True)
class Stats:
    """What is known about one migration file."""

    file_name: str
    version: int
    tx: bool
    up_count: int
    down_count: int


@dataclass(frozen=True)
class CodeMigration:
    """The registration call found in a code migration file."""

    name: str
    use_tx: bool
    up_func_name: str
    down_func_name: str


@dataclass(frozen=True)
class SqlMigration:
    """Transaction mode and statement counts of a SQL migration file."""

    use_tx: bool
    up_count: int
    down_count: int


def _callee_name(func: ast.expr) -> str:
    if isinstance(func, ast.Attribute):
        return func.attr
    if isinstance(func, ast.Name):
        return func.id
    return ""


def _argument_name(arg: ast.expr) -> str:
    if isinstance(arg, ast.Name):
        return arg.id
    if isinstance(arg, ast.Constant) and arg.value is None:
        return _NONE_NAME
    raise ValueError(
        f"failed to assert argument identifier: got {type(arg).__name__}"
    )


def parse_code_migration(source: Union[str, bytes]) -> CodeMigration:
    """Find the single migration registration call among a module's top-level statements."""
    try:
        tree = ast.parse(source)
    except SyntaxError as err:
        raise ValueError(f"failed to parse source: {err}") from err

    calls = [
        stmt.value
        for stmt in tree.body
        if isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Call)
    ]
    if not calls:
        raise ValueError("no registered goose functions")

    name = ""
    use_tx = True
    up_name = down_name = ""
    for call in calls:
        func_name = _callee_name(call.func)
        if func_name == _REGISTER:
            tx = True
        elif func_name == _REGISTER_NO_TX:
            tx = False
        else:
            continue
        if name:
            raise ValueError(
                "found duplicate registered functions:\n"
                f"previous: {name}\ncurrent: {func_name}"
            )
        name = func_name
        use_tx = tx
        if len(call.args) != 2:
            raise ValueError(
                f"registered goose functions have 2 arguments: got {len(call.args)}"
            )
        up_name = _argument_name(call.args[0])
        down_name = _argument_name(call.args[1])

    if not name:
        raise ValueError(
            f"goose register function must be one of: {_REGISTER} or {_REGISTER_NO_TX}"
        )
    return CodeMigration(
        name=name, use_tx=use_tx, up_func_name=up_name, down_func_name=down_name
    )


def parse_sql_file(text: Union[str, bytes], debug: bool = False) -> SqlMigration:
    """Count the up and down statements of a SQL migration."""
    up_statements, tx_up = parse_sql_migration(text, Direction.UP, debug)
    down_statements, tx_down = parse_sql_migration(text, Direction.DOWN, debug)
    if tx_up != tx_down:
        raise ValueError("up and down statements must have the same transaction mode")
    return SqlMigration(
        use_tx=tx_up, up_count=len(up_statements), down_count=len(down_statements)
    )


def _ext(filename: str) -> str:
    return os.path.splitext(filename)[1]


def walk_files(*args: str) -> Iterator[tuple[str, str]]:
    """Yield (filename, contents) for each given file with a .sql or .py extension."""
    for filename in args:
        if _ext(filename) not in (_SQL_EXT, _CODE_EXT):
            continue
        with open(filename, encoding="utf-8") as handle:
            yield filename, handle.read()


def _none_as_number(name: str) -> int:
    return 0 if name == _NONE_NAME else 1


def gather_stats(
    files: Iterable[tuple[str, Union[str, bytes]]], debug: bool = False
) -> list[Stats]:
    """Return stats for every (filename, contents) pair."""
    stats: list[Stats] = []
    for filename, contents in files:
        try:
            version = numeric_component(filename)
        except ValueError as err:
            raise ValueError(
                f"failed to get version from file {filename!r}: {err}"
            ) from err
        up = down = 0
        tx = False
        ext = _ext(filename)
        try:
            if ext == _SQL_EXT:
                sql = parse_sql_file(contents, debug)
                up, down, tx = sql.up_count, sql.down_count, sql.use_tx
            elif ext == _CODE_EXT:
                code = parse_code_migration(contents)
                up = _none_as_number(code.up_func_name)
                down = _none_as_number(code.down_func_name)
                tx = code.use_tx
        except ValueError as err:
            raise ValueError(f"failed to parse file {filename!r}: {err}") from err
        stats.append(
            Stats(file_name=filename, version=version, tx=tx, up_count=up, down_count=down)
        )
    return stats