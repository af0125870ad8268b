"""Tests for dataset caching, single-flight loading and revalidation."""

import asyncio
import gc
import os

import pytest

from skill_catalog.core.config import StoreSettings
from skill_catalog.domain.errors import FetchFailed, ParseError, SourceUnavailable
from skill_catalog.domain.models import RevalidationResult
from skill_catalog.services.caching import DatasetCache

from conftest import E2E_ROWS, CountingBuilder, FakeRevalidator, SettingsHolder, make_db_bytes, write_db

URL = "https://cdn.example.com/skill.db"
INTERVAL_MS = 60_000


def remote_settings() -> StoreSettings:
    return StoreSettings(remote_url=URL, local_path="/nonexistent/skill.db", revalidate_ms=INTERVAL_MS)


def local_settings(path) -> StoreSettings:
    return StoreSettings(local_path=str(path), revalidate_ms=INTERVAL_MS)


def body(etag: str = '"v1"', rows=E2E_ROWS) -> RevalidationResult:
    return RevalidationResult(body=make_db_bytes(rows), etag=etag, last_modified="Mon")


@pytest.mark.asyncio
async def test_concurrent_first_loads_share_one_local_load(e2e_db, clock):
    builder = CountingBuilder()
    cache = DatasetCache(SettingsHolder(local_settings(e2e_db)), builder=builder, clock=clock)

    results = await asyncio.gather(*(cache.get_dataset() for _ in range(10)))

    assert builder.builds == 1
    assert all(result is results[0] for result in results)
    assert not cache.is_loading


@pytest.mark.asyncio
async def test_concurrent_first_loads_share_one_remote_fetch(clock):
    revalidator = FakeRevalidator(delay=0.01)
    revalidator.fetch_results.append(body())
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    results = await asyncio.gather(*(cache.get_dataset() for _ in range(5)))

    assert revalidator.fetch_calls == [URL]
    assert len({id(result) for result in results}) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_a_failed_load(clock):
    revalidator = FakeRevalidator(delay=0.01)
    revalidator.fetch_results.append(FetchFailed("boom", status_code=503))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    results = await asyncio.gather(*(cache.get_dataset() for _ in range(3)), return_exceptions=True)

    assert len(revalidator.fetch_calls) == 1
    assert all(isinstance(result, FetchFailed) for result in results)
    assert cache.dataset is None


@pytest.mark.asyncio
async def test_dataset_reused_within_interval_and_rechecked_after(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body())
    revalidator.revalidate_results.append(RevalidationResult(not_modified=True, etag='"v1"', last_modified="Mon"))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    first = await cache.get_dataset()
    clock.advance(30)
    second = await cache.get_dataset()

    assert second is first
    assert len(revalidator.fetch_calls) == 1
    assert revalidator.revalidate_calls == []

    clock.advance(31)
    third = await cache.get_dataset()
    await cache.get_dataset()

    assert third is first
    assert len(revalidator.revalidate_calls) == 1
    assert revalidator.revalidate_calls[0].etag == '"v1"'


@pytest.mark.asyncio
async def test_not_modified_keeps_dataset_and_advances_last_checked(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body())
    revalidator.revalidate_results.append(RevalidationResult(not_modified=True, etag='"v1"', last_modified="Tue"))
    builder = CountingBuilder()
    cache = DatasetCache(SettingsHolder(remote_settings()), builder=builder, revalidator=revalidator, clock=clock)

    first = await cache.get_dataset()
    checked = cache.metadata.last_checked
    clock.advance(120)
    second = await cache.get_dataset()

    assert second is first
    assert not first.closed
    assert builder.builds == 1
    assert cache.metadata.last_checked == checked + 120_000
    assert cache.metadata.last_modified == "Tue"


@pytest.mark.asyncio
async def test_modified_dataset_replaces_and_closes_previous(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body('"v1"'))
    revalidator.revalidate_results.append(body('"v2"', rows=E2E_ROWS[:1]))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    first = await cache.get_dataset()
    clock.advance(120)
    second = await cache.get_dataset()

    assert second is not first
    assert first.closed
    assert cache.metadata.etag == '"v2"'
    assert second.fetch_one(f"SELECT COUNT(*) AS n FROM {second.quoted_table}")["n"] == 1


@pytest.mark.asyncio
async def test_revalidation_failure_serves_stale_dataset(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body('"v1"'))
    revalidator.revalidate_results.append(FetchFailed("server down", status_code=500))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    first = await cache.get_dataset()
    clock.advance(120)
    second = await cache.get_dataset()

    assert second is first
    assert cache.metadata.etag == '"v1"'
    assert cache.metadata.last_checked == clock.now * 1000

    # the failed attempt counts as a check, so nothing is retried right away
    await cache.get_dataset()
    assert len(revalidator.revalidate_calls) == 1


@pytest.mark.asyncio
async def test_unparseable_revalidated_body_serves_stale_dataset(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body())
    revalidator.revalidate_results.append(RevalidationResult(body=b"garbage" * 100, etag='"v2"'))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    first = await cache.get_dataset()
    clock.advance(120)

    assert await cache.get_dataset() is first
    assert cache.metadata.etag == '"v1"'


@pytest.mark.asyncio
async def test_first_load_failure_propagates_and_is_retried(clock):
    revalidator = FakeRevalidator()
    revalidator.fetch_results.extend([FetchFailed("nope", status_code=404), body()])
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    with pytest.raises(FetchFailed):
        await cache.get_dataset()
    assert cache.dataset is None

    dataset = await cache.get_dataset()
    assert dataset.table == "skills"
    assert len(revalidator.fetch_calls) == 2


@pytest.mark.asyncio
async def test_first_load_of_garbage_raises_parse_error(tmp_path, clock):
    path = tmp_path / "skill.db"
    path.write_bytes(b"not a database" * 100)
    cache = DatasetCache(SettingsHolder(local_settings(path)), clock=clock)

    with pytest.raises(ParseError):
        await cache.get_dataset()


@pytest.mark.asyncio
async def test_missing_local_file_raises_source_unavailable(tmp_path, clock):
    cache = DatasetCache(SettingsHolder(local_settings(tmp_path / "missing.db")), clock=clock)

    with pytest.raises(SourceUnavailable):
        await cache.get_dataset()


@pytest.mark.asyncio
async def test_local_unchanged_mtime_skips_rebuild(e2e_db, clock):
    builder = CountingBuilder()
    cache = DatasetCache(SettingsHolder(local_settings(e2e_db)), builder=builder, clock=clock)

    first = await cache.get_dataset()
    clock.advance(120)
    second = await cache.get_dataset()

    assert second is first
    assert builder.builds == 1
    assert cache.metadata.last_checked == clock.now * 1000


@pytest.mark.asyncio
async def test_local_changed_mtime_rebuilds(e2e_db, clock):
    builder = CountingBuilder()
    cache = DatasetCache(SettingsHolder(local_settings(e2e_db)), builder=builder, clock=clock)

    first = await cache.get_dataset()
    write_db(e2e_db, E2E_ROWS[:1])
    stat = os.stat(e2e_db)
    os.utime(e2e_db, (stat.st_atime, stat.st_mtime + 10))
    clock.advance(120)
    second = await cache.get_dataset()

    assert second is not first
    assert first.closed
    assert builder.builds == 2


@pytest.mark.asyncio
async def test_local_file_removed_after_load_serves_stale(e2e_db, clock):
    cache = DatasetCache(SettingsHolder(local_settings(e2e_db)), clock=clock)

    first = await cache.get_dataset()
    e2e_db.unlink()
    clock.advance(120)

    assert await cache.get_dataset() is first


@pytest.mark.asyncio
async def test_source_change_forces_fresh_load(e2e_db, clock):
    holder = SettingsHolder(local_settings(e2e_db))
    revalidator = FakeRevalidator()
    revalidator.fetch_results.append(body('"remote"'))
    cache = DatasetCache(holder, revalidator=revalidator, clock=clock)

    local = await cache.get_dataset()
    assert cache.metadata.source == str(e2e_db)
    assert cache.metadata.mtime_ms > 0

    holder.settings = remote_settings()
    remote = await cache.get_dataset()

    assert remote is not local
    assert local.closed
    assert revalidator.fetch_calls == [URL]
    assert revalidator.revalidate_calls == []
    assert cache.metadata.source == URL
    assert cache.metadata.etag == '"remote"'
    assert cache.metadata.mtime_ms == 0


@pytest.mark.asyncio
async def test_status_and_close(e2e_db, clock):
    cache = DatasetCache(SettingsHolder(local_settings(e2e_db)), clock=clock)
    assert cache.status()["loaded"] is False

    dataset = await cache.get_dataset()
    status = cache.status()
    assert status["loaded"] is True
    assert status["table"] == "skills"
    assert status["source"] == str(e2e_db)

    cache.close()
    assert dataset.closed
    assert cache.dataset is None


@pytest.mark.asyncio
async def test_failed_load_with_all_callers_cancelled_reports_nothing_unhandled(clock):
    revalidator = FakeRevalidator(delay=0.05)
    revalidator.fetch_results.append(FetchFailed("boom", status_code=503))
    cache = DatasetCache(SettingsHolder(remote_settings()), revalidator=revalidator, clock=clock)

    loop = asyncio.get_running_loop()
    unhandled = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: unhandled.append(context))
    try:
        caller = asyncio.create_task(cache.get_dataset())
        await asyncio.sleep(0.01)
        load = cache._loading
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await asyncio.wait([load])
        assert not cache.is_loading
        del load, caller
        gc.collect()
    finally:
        loop.set_exception_handler(previous_handler)

    assert unhandled == []
    assert len(revalidator.fetch_calls) == 1
