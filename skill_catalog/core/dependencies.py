from typing import Optional

from skill_catalog.core.config import load_settings
from skill_catalog.services.caching import DatasetCache
from skill_catalog.services.query import SkillQueryService

_dataset_cache: Optional[DatasetCache] = None
_skill_service: Optional[SkillQueryService] = None

def get_dataset_cache() -> DatasetCache:
    global _dataset_cache
    if _dataset_cache is None:
        _dataset_cache = DatasetCache(settings_loader=load_settings)
    return _dataset_cache

def get_skill_service() -> SkillQueryService:
    global _skill_service
    if _skill_service is None:
        _skill_service = SkillQueryService(get_dataset_cache())
    return _skill_service

def reset_dependencies() -> None:
    """Drop the process-wide instances, closing the cached dataset."""
    global _dataset_cache, _skill_service
    if _dataset_cache is not None:
        _dataset_cache.close()
    _dataset_cache = None
    _skill_service = None
