"""Exception hierarchy raised by database managers."""

from __future__ import annotations


class DatabaseManagerError(RuntimeError):
    """Base class for every error raised by dbwrangler."""


class ConfigurationError(DatabaseManagerError):
    """Raised when required configuration is missing or invalid."""


class UnsupportedDialectError(ConfigurationError):
    """Raised by the factory for dialect strings it cannot map to an engine."""

    def __init__(self, dialect: str, supported: tuple[str, ...]) -> None:
        self.dialect = dialect
        self.supported = supported
        super().__init__(f"'{dialect}' is not supported. Supported dialects: {', '.join(supported)}")


class UnsupportedOperationError(DatabaseManagerError):
    """Raised when an engine does not implement an administrative operation."""

    def __init__(self, operation: str, engine: str) -> None:
        self.operation = operation
        self.engine = engine
        super().__init__(f"{operation} is not implemented for the {engine} engine")


class DatabaseConnectionError(DatabaseManagerError):
    """Raised when a master or tenant connection cannot be established."""

    def __init__(self, engine: str, target: str, reason: str) -> None:
        self.engine = engine
        self.target = target
        super().__init__(f"Failed to connect to {engine} database '{target}': {reason}")


class StatementError(DatabaseManagerError):
    """Raised when the server rejects an administrative statement."""

    def __init__(self, operation: str, engine: str, statement: str, reason: str) -> None:
        self.operation = operation
        self.engine = engine
        self.statement = statement
        super().__init__(f"{operation} failed on {engine}: {reason} (statement: {statement})")


class DatabaseExistsError(StatementError):
    """Raised when creating or copying into a database name that is already taken."""


class MigrationError(DatabaseManagerError):
    """Raised for malformed migration directories or files."""


__all__ = [
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseExistsError",
    "DatabaseManagerError",
    "MigrationError",
    "StatementError",
    "UnsupportedDialectError",
    "UnsupportedOperationError",
]
