"""
Pydantic models for the skill catalog.

This module defines the data models shared by the cache and query layers:
- Dataset source descriptors and cache metadata
- The canonical skill record returned to API consumers
- Query parameters, paginated results and category summaries
- The outcome of a remote revalidation

Field aliases carry the wire names (``pageSize``, ``fromRepo``...) so the
JSON produced by the API matches what existing front-ends already consume.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Dataset source and cache state
# ---------------------------------------------------------------------------


class SourceType(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class DataSource(BaseModel):
    """
    Where the dataset comes from.

    ``key`` identifies the source for caching purposes: metadata recorded for
    one key is never reused for another.
    """

    type: SourceType
    key: str = Field(description="Cache identity of the source (path or URL).")
    locator: str = Field(description="Filesystem path for local sources, URL for remote ones.")


class CacheMetadata(BaseModel):
    """
    Bookkeeping for the currently cached dataset.

    Timestamps are milliseconds since the epoch.
    """

    source: str = Field(default="", description="DataSource.key the metadata belongs to.")
    etag: str = Field(default="", description="Last ETag returned by the remote host.")
    last_modified: str = Field(default="", description="Last Last-Modified header returned by the remote host.")
    last_checked: float = Field(default=0.0, description="When the source was last checked.")
    mtime_ms: float = Field(default=0.0, description="Modification time of the local file when loaded.")


class RevalidationResult(BaseModel):
    """Outcome of a conditional fetch against the remote dataset."""

    not_modified: bool = False
    body: Optional[bytes] = None
    etag: str = ""
    last_modified: str = ""


# ---------------------------------------------------------------------------
# Skill records
# ---------------------------------------------------------------------------


class SkillRecord(BaseModel):
    """
    Canonical, stable-shaped view of one dataset row.

    Produced by ``normalize_skill`` regardless of how the source table names
    its columns.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Union[int, str]
    identifier: str = Field(description="URL-safe key used to address this record.")
    skill_name: str = ""
    from_repo: str = Field(default="", alias="fromRepo")
    skill_path: str = Field(default="", alias="skillPath")
    repostars: int = 0
    tagline: str = ""
    tags: List[str] = Field(default_factory=list)
    tags_en: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    category: str = ""
    description: str = ""
    description_zh: str = ""
    description_en: str = ""
    use_case: str = ""
    use_case_en: str = ""
    download_url: str = ""
    skill_md_content: str = ""
    skill_md_content_translation: str = ""
    file_tree: str = ""
    how_to_install: str = ""
    created_at: str = ""
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


SortOrder = Literal["latest", "oldest", "stars"]


class QuerySpec(BaseModel):
    """Search, filter, sort and pagination parameters for listing skills."""

    model_config = ConfigDict(populate_by_name=True)

    q: str = ""
    category: str = ""
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=16, gt=0, alias="pageSize")
    sort: SortOrder = "latest"

    @field_validator("q", "category", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("sort", mode="before")
    @classmethod
    def _unknown_sort_is_latest(cls, value):
        # Clients send arbitrary strings; anything unrecognised sorts by recency.
        if value in ("latest", "oldest", "stars"):
            return value
        return "latest"


class QueryResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[SkillRecord] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = Field(default=16, alias="pageSize")


class SkillSummary(BaseModel):
    total: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
