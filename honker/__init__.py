"""Versioned database schema migrations from annotated SQL files and registered functions."""

__version__ = "0.1.0"

__all__ = ["cfg", "commands", "dialect", "migrate", "migration", "sqlparser", "stats"]