"""Exception hierarchy for db2-tap."""
from __future__ import annotations


class Db2TapError(Exception):
    """Base class for all db2-tap errors."""


class ConfigurationError(Db2TapError):
    """Raised when an agent or category configuration is unusable."""


class Db2ConnectionError(Db2TapError):
    """Raised when a database connection cannot be created."""


class QueryExecutionError(Db2TapError):
    def __init__(self, category: str, message: str) -> None:
        self.category = category
        super().__init__(f"[{category}] {message}")


class ValueParseError(Db2TapError):
    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Unable to parse int/float number from value {value!r}")
