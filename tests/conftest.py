"""Shared pytest fixtures and helpers for building skill datasets."""

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from skill_catalog.core.config import StoreSettings
from skill_catalog.domain.models import CacheMetadata, RevalidationResult
from skill_catalog.storage.dataset import DatasetBuilder, quote_identifier

SKILL_COLUMNS = [
    "id",
    "skill_name",
    "fromRepo",
    "skillPath",
    "repostars",
    "tagline",
    "tags",
    "tags_en",
    "categories",
    "description",
    "description_zh",
    "description_en",
    "use_case",
    "use_case_en",
    "download_url",
    "skill_md_content",
    "created_at",
    "updated_at",
]

E2E_ROWS = [
    {
        "id": 1,
        "skill_name": "alpha",
        "categories": '["coding"]',
        "repostars": 5,
        "updated_at": "2024-01-01",
    },
    {
        "id": 2,
        "skill_name": "beta",
        "categories": '["coding"]',
        "repostars": 50,
        "updated_at": "2024-02-01",
    },
]


def make_db_bytes(
    rows: Sequence[Dict[str, Any]],
    table: str = "skills",
    columns: Optional[List[str]] = None,
    extra_tables: Sequence[str] = (),
) -> bytes:
    """Create an SQLite database in memory and return its serialized bytes."""
    columns = columns or SKILL_COLUMNS
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute(
            f"CREATE TABLE {quote_identifier(table)} ({', '.join(quote_identifier(c) for c in columns)})"
        )
        for name in extra_tables:
            conn.execute(f"CREATE TABLE {quote_identifier(name)} (value TEXT)")
        placeholders = ", ".join("?" for _ in columns)
        for row in rows:
            conn.execute(
                f"INSERT INTO {quote_identifier(table)} VALUES ({placeholders})",
                [row.get(c) for c in columns],
            )
        conn.commit()
        return conn.serialize()
    finally:
        conn.close()


def write_db(path: Path, rows: Sequence[Dict[str, Any]], **kwargs) -> Path:
    path.write_bytes(make_db_bytes(rows, **kwargs))
    return path


class FakeClock:
    """Manually advanced clock returning seconds, like time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingBuilder(DatasetBuilder):
    def __init__(self):
        self.builds = 0

    def build(self, data: bytes):
        self.builds += 1
        return super().build(data)


class FakeRevalidator:
    """
    Stand-in for RemoteRevalidator.

    Results (or exceptions) are queued per method and consumed in order.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.fetch_calls: List[str] = []
        self.revalidate_calls: List[CacheMetadata] = []
        self.fetch_results: List[Any] = []
        self.revalidate_results: List[Any] = []

    async def _next(self, queue: List[Any]) -> RevalidationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch(self, url: str) -> RevalidationResult:
        self.fetch_calls.append(url)
        return await self._next(self.fetch_results)

    async def revalidate(self, url: str, metadata: CacheMetadata) -> RevalidationResult:
        self.revalidate_calls.append(metadata.model_copy())
        return await self._next(self.revalidate_results)


class SettingsHolder:
    """Mutable settings source so tests can switch configuration between calls."""

    def __init__(self, settings: StoreSettings):
        self.settings = settings

    def __call__(self) -> StoreSettings:
        return self.settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def e2e_db(tmp_path) -> Path:
    return write_db(tmp_path / "skill.db", E2E_ROWS)
