"""Shared test fixtures for deltaq."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from deltaq.config import Settings, ShardGroup
from deltaq.coordination.sqlite_store import SqliteStore
from deltaq.errors import BuildFailed
from deltaq.records import RecordStore, open_db


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingIndexer:
    """Indexing tool double that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fail_on: str | None = None
        self.before_call: Any = None

    def _call(self, *call: Any) -> list[str]:
        if self.before_call is not None:
            self.before_call(call)
        self.calls.append(call)
        if self.fail_on == call[0]:
            raise BuildFailed(["indexer", *map(str, call)], 1, "FATAL: simulated failure\n")
        return [f"{call[0]} ok"]

    def build(self, index: str, *, verbose: bool) -> list[str]:
        return self._call("build", index, verbose)

    def merge(self, base: str, delta: str, *, rotate: bool = True) -> list[str]:
        return self._call("merge", base, delta, rotate)

    def rebuild(self, base: str, *, rotate: bool = True) -> list[str]:
        return self._call("rebuild", base, rotate)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop handlers the CLI installs so they do not outlive CliRunner streams."""
    yield
    logger = logging.getLogger("deltaq")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock) -> SqliteStore:
    return SqliteStore(tmp_path / "coord" / "deltaq.db", clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    indices = tmp_path / "indices"
    indices.mkdir()
    markers = tmp_path / "markers"
    markers.mkdir()
    return Settings(
        indices_location=indices,
        marker_dir=markers,
        records_db_path=tmp_path / "records.db",
        coordination_url=f"sqlite:///{tmp_path / 'coord.db'}",
        detect_rotation=False,
    )


@pytest.fixture()
def sharded_settings(settings: Settings) -> Settings:
    group = ShardGroup(
        namespace="incident_index",
        quorum=3,
        partitions=("incidents_p*_delta",),
        table="incidents",
        semaphore_wait=0.2,
    )
    return replace(settings, shard_groups=(group,))


@pytest.fixture()
def records(settings: Settings) -> RecordStore:
    store = RecordStore(settings.records_db_path)
    store.create_table("articles")
    store.create_table("incidents")
    return store


@pytest.fixture()
def indexer() -> RecordingIndexer:
    return RecordingIndexer()


def insert_rows(db_path: Path, table: str, rows: list[tuple[Any, int]]) -> None:
    """Insert ``(updated_at, delta)`` rows into *table*."""
    conn = open_db(db_path)
    conn.executemany(f"INSERT INTO {table} (updated_at, delta) VALUES (?, ?)", rows)  # noqa: S608
    conn.commit()
    conn.close()


def pending_rows(db_path: Path, table: str) -> list[Any]:
    """Return ``updated_at`` of rows still flagged delta, sorted."""
    conn = open_db(db_path)
    rows = conn.execute(
        f"SELECT updated_at FROM {table} WHERE delta = 1 ORDER BY updated_at"  # noqa: S608
    ).fetchall()
    conn.close()
    return [row[0] for row in rows]
