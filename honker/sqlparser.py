"""Split annotated SQL migration scripts into individual statements."""

from __future__ import annotations

import enum
import io
import logging
from typing import IO, Iterator, Union

__all__ = [
    "Direction",
    "SQLParseError",
    "parse_sql_migration",
    "ends_with_semicolon",
    "cleanup_statement",
]

_log = logging.getLogger(__name__)

_GRAY = "\033[90m"
_RESET = "\033[00m"

# Longest line the scanner accepts.
_SCAN_BUF_SIZE = 4 * 1024 * 1024


class SQLParseError(ValueError):
    """Raised when a SQL migration script cannot be parsed."""


class Direction(str, enum.Enum):
    """Which half of a migration to extract."""

    UP = "up"
    DOWN = "down"

    @classmethod
    def from_bool(cls, value: bool) -> "Direction":
        """Return UP for a true value and DOWN otherwise."""
        return cls.UP if value else cls.DOWN

    def __str__(self) -> str:
        return self.value


class _State(enum.IntEnum):
    START = 0
    UP = 1
    STATEMENT_BEGIN_UP = 2
    STATEMENT_END_UP = 3
    DOWN = 4
    STATEMENT_BEGIN_DOWN = 5
    STATEMENT_END_DOWN = 6


_UP_STATES = frozenset({_State.UP, _State.STATEMENT_BEGIN_UP, _State.STATEMENT_END_UP})
_DOWN_STATES = frozenset(
    {_State.DOWN, _State.STATEMENT_BEGIN_DOWN, _State.STATEMENT_END_DOWN}
)
_END_STATES = frozenset({_State.STATEMENT_END_UP, _State.STATEMENT_END_DOWN})


class _StateMachine:
    def __init__(self, verbose: bool) -> None:
        self.state = _State.START
        self.verbose = verbose

    def set(self, new: _State) -> None:
        self.note(f"set {int(self.state)} => {int(new)}")
        self.state = new

    def note(self, message: str) -> None:
        if self.verbose:
            _log.info("%sStateMachine: %s%s", _GRAY, message, _RESET)


Source = Union[str, bytes, IO[str], IO[bytes]]


def _read_text(source: Source) -> str:
    if hasattr(source, "read"):
        source = source.read()  # type: ignore[union-attr]
    if isinstance(source, (bytes, bytearray)):
        return bytes(source).decode("utf-8")
    return source  # type: ignore[return-value]


def _lines(text: str) -> Iterator[str]:
    """Yield lines the way a line scanner does: no final empty line, CR dropped."""
    if not text:
        return
    parts = text.split("\n")
    if text.endswith("\n"):
        parts.pop()
    for part in parts:
        if part.endswith("\r"):
            part = part[:-1]
        if len(part) > _SCAN_BUF_SIZE:
            raise SQLParseError("failed to scan migration: token too long")
        yield part


def _missing_semicolon(state: _State, direction: Direction, remaining: str) -> SQLParseError:
    return SQLParseError(
        f"failed to parse migration: state {int(state)}, direction: {direction}: "
        f"unexpected unfinished SQL query: {remaining!r}: missing semicolon?"
    )


def parse_sql_migration(
    source: Source, direction: Direction, debug: bool = False
) -> tuple[list[str], bool]:
    """Return the statements for ``direction`` and whether to use a transaction.

    Statements end at a line whose last word before any ``--`` comment ends in
    a semicolon, or are delimited explicitly with ``-- +goose StatementBegin``
    and ``-- +goose StatementEnd``.
    """
    direction = Direction(direction)
    text = _read_text(source)
    machine = _StateMachine(debug)
    use_tx = True
    statements: list[str] = []
    buf = io.StringIO()

    def buffered() -> str:
        return buf.getvalue()

    def reset() -> None:
        buf.seek(0)
        buf.truncate()

    for line in _lines(text):
        if debug:
            _log.info("%s", line)
        if machine.state is _State.START and not line.strip():
            continue

        if line.startswith("--"):
            command = line[2:].strip()
            if command == "+goose Up":
                if machine.state is not _State.START:
                    raise SQLParseError(
                        "duplicate '-- +goose Up' annotations; "
                        f"stateMachine={int(machine.state)}"
                    )
                machine.set(_State.UP)
                continue
            if command == "+goose Down":
                if machine.state not in (_State.UP, _State.STATEMENT_END_UP):
                    raise SQLParseError(
                        "must start with '-- +goose Up' annotation, "
                        f"stateMachine={int(machine.state)}"
                    )
                remaining = buffered().strip()
                if remaining:
                    raise _missing_semicolon(machine.state, direction, remaining)
                machine.set(_State.DOWN)
                continue
            if command == "+goose StatementBegin":
                if machine.state in (_State.UP, _State.STATEMENT_END_UP):
                    machine.set(_State.STATEMENT_BEGIN_UP)
                elif machine.state in (_State.DOWN, _State.STATEMENT_END_DOWN):
                    machine.set(_State.STATEMENT_BEGIN_DOWN)
                else:
                    raise SQLParseError(
                        "'-- +goose StatementBegin' must be defined after "
                        "'-- +goose Up' or '-- +goose Down' annotation, "
                        f"stateMachine={int(machine.state)}"
                    )
                continue
            if command == "+goose StatementEnd":
                if machine.state is _State.STATEMENT_BEGIN_UP:
                    machine.set(_State.STATEMENT_END_UP)
                elif machine.state is _State.STATEMENT_BEGIN_DOWN:
                    machine.set(_State.STATEMENT_END_DOWN)
                else:
                    raise SQLParseError(
                        "'-- +goose StatementEnd' must be defined after "
                        "'-- +goose StatementBegin'"
                    )
            elif command == "+goose NO TRANSACTION":
                use_tx = False
                continue

        # Leading comments and empty lines before a statement are ignored;
        # once a statement has started, everything is kept until it ends.
        if not buffered():
            if line.strip().startswith("--") or line == "":
                machine.note("ignore comment")
                continue

        if machine.state not in _END_STATES:
            buf.write(line + "\n")

        if machine.state in _UP_STATES:
            if direction is Direction.DOWN:
                reset()
                machine.note("ignore down")
                continue
        elif machine.state in _DOWN_STATES:
            if direction is Direction.UP:
                reset()
                machine.note("ignore up")
                continue
        else:
            raise SQLParseError(
                f"failed to parse migration: unexpected state {int(machine.state)} "
                f"on line {line!r}"
            )

        state = machine.state
        if state in (_State.UP, _State.DOWN):
            if ends_with_semicolon(line):
                statements.append(cleanup_statement(buffered()))
                reset()
                machine.note(
                    "store simple Up query" if state is _State.UP else "store simple Down query"
                )
        elif state is _State.STATEMENT_END_UP:
            statements.append(cleanup_statement(buffered()))
            reset()
            machine.note("store Up statement")
            machine.set(_State.UP)
        elif state is _State.STATEMENT_END_DOWN:
            statements.append(cleanup_statement(buffered()))
            reset()
            machine.note("store Down statement")
            machine.set(_State.DOWN)

    if machine.state is _State.START:
        raise SQLParseError(
            "failed to parse migration: must start with '-- +goose Up' annotation"
        )
    if machine.state in (_State.STATEMENT_BEGIN_UP, _State.STATEMENT_BEGIN_DOWN):
        raise SQLParseError(
            "failed to parse migration: missing '-- +goose StatementEnd' annotation"
        )
    remaining = buffered().strip()
    if remaining:
        raise _missing_semicolon(machine.state, direction, remaining)
    return statements, use_tx


def cleanup_statement(statement: str) -> str:
    """Trim everything after the last semicolon, if there is one past the start."""
    n = statement.rfind(";")
    if n > 0:
        return statement[: n + 1]
    return statement


def ends_with_semicolon(line: str) -> bool:
    """Return True if the last word before any ``--`` comment ends with ``;``."""
    prev = ""
    for word in line.split():
        if word.startswith("--"):
            break
        prev = word
    return prev.endswith(";")