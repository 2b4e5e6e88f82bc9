"""Exception hierarchy for delta runs."""

from __future__ import annotations


class DeltaqError(Exception):
    """Base class for every error raised by deltaq."""


class ConfigError(DeltaqError):
    """The configuration file is missing or holds an invalid value."""


class InvalidIndex(ConfigError, ValueError):
    """An index or table name that no run can use."""


class LockBusy(DeltaqError):
    """Another worker holds the lock for this index."""

    def __init__(self, index: str) -> None:
        super().__init__(f"Lock for index '{index}' is held by another worker")
        self.index = index


class AlreadyRotating(DeltaqError):
    """An external rotate/merge process is already working on this index."""

    def __init__(self, index: str) -> None:
        super().__init__(f"Indexer is already running for index '{index}'")
        self.index = index


class BuildFailed(DeltaqError):
    """The indexing tool exited with a non-zero status or could not start."""

    def __init__(self, command: list[str], returncode: int | None, output: str) -> None:
        status = "could not start" if returncode is None else f"exited with {returncode}"
        super().__init__(f"{' '.join(command)} {status}")
        self.command = command
        self.returncode = returncode
        self.output = output


class CoordinationStoreUnavailable(DeltaqError):
    """The shared coordination store could not be reached or answered with an error."""


class RecordStoreUnavailable(DeltaqError):
    """The record store could not be queried or updated."""
