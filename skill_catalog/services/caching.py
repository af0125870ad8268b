"""
In-memory cache for the skill dataset.

This service handles:
- Resolving the configured source (local file or remote URL) on every access
- Serving the loaded dataset until the revalidation interval elapses
- Sharing a single in-flight load between concurrent callers
- Revalidating local files by mtime and remote files by ETag/Last-Modified
- Falling back to the stale dataset when a revalidation fails
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiofiles
import aiofiles.os

from skill_catalog.core.config import StoreSettings, load_settings, resolve_source
from skill_catalog.domain.errors import DatasetError, SourceUnavailable
from skill_catalog.domain.models import CacheMetadata, DataSource, SourceType
from skill_catalog.services.revalidator import RemoteRevalidator
from skill_catalog.storage.dataset import DatasetBuilder, LoadedDataset

logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task) -> None:
    # every awaiting caller may have been cancelled before the load settled
    if not task.cancelled():
        task.exception()


class DatasetCache:
    """
    Owns the single loaded dataset and decides when to reload it.

    States: EMPTY (nothing loaded), LOADING (a load task is running and every
    caller awaits it) and READY (a dataset is served from memory).
    """

    def __init__(
        self,
        settings_loader: Callable[[], StoreSettings] = load_settings,
        builder: Optional[DatasetBuilder] = None,
        revalidator: Optional[RemoteRevalidator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings_loader = settings_loader
        self._builder = builder or DatasetBuilder()
        self._revalidator = revalidator
        self._clock = clock

        self._dataset: Optional[LoadedDataset] = None
        self._meta = CacheMetadata()
        self._loading: Optional[asyncio.Task] = None

    @property
    def dataset(self) -> Optional[LoadedDataset]:
        return self._dataset

    @property
    def metadata(self) -> CacheMetadata:
        return self._meta

    @property
    def is_loading(self) -> bool:
        return self._loading is not None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _get_revalidator(self, settings: StoreSettings) -> RemoteRevalidator:
        if self._revalidator is None:
            self._revalidator = RemoteRevalidator(timeout=settings.fetch_timeout)
        return self._revalidator

    def _is_fresh(self, source: DataSource, settings: StoreSettings) -> bool:
        if self._dataset is None or self._meta.source != source.key:
            return False
        return self._now_ms() - self._meta.last_checked < settings.revalidate_ms

    async def get_dataset(self) -> LoadedDataset:
        """
        Return a ready dataset, loading or revalidating it first if needed.

        Raises:
            DatasetError: the dataset could not be loaded and there is no
                previously loaded copy of the same source to fall back to.
        """
        settings = self._settings_loader()
        source = resolve_source(settings)

        if self._is_fresh(source, settings):
            return self._dataset

        if self._loading is None:
            self._loading = asyncio.create_task(self._load(source, settings))
            self._loading.add_done_callback(_consume_result)
        # shield: a cancelled caller must not cancel the load for everyone else
        return await asyncio.shield(self._loading)

    async def _load(self, source: DataSource, settings: StoreSettings) -> LoadedDataset:
        now = self._now_ms()
        current = self._dataset if self._meta.source == source.key else None
        try:
            if source.type == SourceType.REMOTE:
                return await self._load_remote(source, settings, current, now)
            return await self._load_local(source, current, now)
        except DatasetError as e:
            if current is None:
                logger.error(f"Failed to load skill dataset from {source.key}: {e}")
                raise
            logger.warning(f"Revalidation of {source.key} failed, serving cached dataset: {e}")
            self._meta = self._meta.model_copy(update={"last_checked": now})
            return current
        finally:
            self._loading = None

    async def _load_local(
        self,
        source: DataSource,
        current: Optional[LoadedDataset],
        now: float,
    ) -> LoadedDataset:
        path = source.locator
        try:
            stats = await aiofiles.os.stat(path)
        except OSError as e:
            raise SourceUnavailable(f"Skill dataset not found: {path}") from e

        mtime_ms = stats.st_mtime * 1000.0
        if current is not None and self._meta.mtime_ms == mtime_ms:
            logger.debug(f"Local dataset {path} unchanged")
            self._meta = self._meta.model_copy(update={"last_checked": now})
            return current

        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except OSError as e:
            raise SourceUnavailable(f"Failed to read skill dataset {path}: {e}") from e

        dataset = self._builder.build(data)
        logger.info(f"Loaded skill dataset from {path} ({len(data)} bytes, table={dataset.table})")
        return self._replace(
            dataset,
            CacheMetadata(source=source.key, last_checked=now, mtime_ms=mtime_ms),
        )

    async def _load_remote(
        self,
        source: DataSource,
        settings: StoreSettings,
        current: Optional[LoadedDataset],
        now: float,
    ) -> LoadedDataset:
        revalidator = self._get_revalidator(settings)
        if current is None:
            result = await revalidator.fetch(source.locator)
        else:
            result = await revalidator.revalidate(source.locator, self._meta)

        if result.not_modified and current is not None:
            logger.debug(f"Remote dataset {source.key} not modified")
            self._meta = self._meta.model_copy(
                update={
                    "etag": result.etag,
                    "last_modified": result.last_modified,
                    "last_checked": now,
                }
            )
            return current

        dataset = self._builder.build(result.body or b"")
        logger.info(f"Loaded skill dataset from {source.key} (table={dataset.table})")
        return self._replace(
            dataset,
            CacheMetadata(
                source=source.key,
                etag=result.etag,
                last_modified=result.last_modified,
                last_checked=now,
                mtime_ms=0.0,
            ),
        )

    def _replace(self, dataset: LoadedDataset, meta: CacheMetadata) -> LoadedDataset:
        previous = self._dataset
        if previous is not None and previous is not dataset:
            previous.close()
        self._dataset = dataset
        self._meta = meta
        return dataset

    def status(self) -> Dict[str, Any]:
        """Describe the cache state for health checks."""
        return {
            "loaded": self._dataset is not None,
            "loading": self.is_loading,
            "source": self._meta.source,
            "table": self._dataset.table if self._dataset else None,
            "etag": self._meta.etag or None,
            "last_modified": self._meta.last_modified or None,
            "last_checked": self._meta.last_checked or None,
        }

    def close(self):
        """Release the cached dataset."""
        if self._dataset is not None:
            self._dataset.close()
            self._dataset = None
        self._meta = CacheMetadata()
