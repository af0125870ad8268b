"""
Search, lookup and summary queries over the cached skill dataset.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, List, Optional, Tuple
from urllib.parse import unquote

from skill_catalog.domain.models import QueryResult, QuerySpec, SkillRecord, SkillSummary
from skill_catalog.domain.normalization import CONTENT_FIELDS, FIELD_SOURCES, normalize_skill
from skill_catalog.domain.skill_utils import pick_category
from skill_catalog.services.caching import DatasetCache
from skill_catalog.storage.dataset import LoadedDataset, quote_identifier

logger = logging.getLogger(__name__)

SEARCH_COLUMNS = (
    "skill_name",
    "tagline",
    "description",
    "description_zh",
    "description_en",
    "use_case",
    "use_case_en",
    "tags",
    "tags_en",
)

SORT_CLAUSES = {
    "latest": ("updated_at", "DESC"),
    "oldest": ("updated_at", "ASC"),
    "stars": ("repostars", "DESC"),
}

_CONTENT_KEYS = frozenset(key for field in CONTENT_FIELDS for key in FIELD_SOURCES[field])


def build_where_clause(dataset: LoadedDataset, q: str, category: str) -> Tuple[str, List[Any]]:
    """
    Build the WHERE clause shared by the count and page queries.

    Only columns present in the table are referenced. A search term with no
    searchable column matches nothing, as does a category filter on a table
    without a ``categories`` column.
    """
    conditions: List[str] = []
    params: List[Any] = []

    if category:
        if dataset.has_column("categories"):
            conditions.append("categories LIKE ?")
            params.append(f"%{category}%")
        else:
            conditions.append("0")

    if q:
        columns = [c for c in SEARCH_COLUMNS if dataset.has_column(c)]
        if columns:
            conditions.append("(" + " OR ".join(f"{quote_identifier(c)} LIKE ?" for c in columns) + ")")
            params.extend([f"%{q}%"] * len(columns))
        else:
            conditions.append("0")

    clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return clause, params


def build_order_clause(dataset: LoadedDataset, sort: str) -> str:
    column, direction = SORT_CLAUSES.get(sort, SORT_CLAUSES["latest"])
    if not dataset.has_column(column):
        return ""
    return f"ORDER BY {quote_identifier(column)} {direction}"


def list_columns(dataset: LoadedDataset) -> str:
    """Columns selected for list pages: everything except the large content blobs."""
    columns = [c for c in dataset.column_order if c not in _CONTENT_KEYS]
    if not columns:
        return "*"
    return ", ".join(quote_identifier(c) for c in columns)


class SkillQueryService:
    """Read operations exposed to the API layer."""

    def __init__(self, cache: DatasetCache):
        self.cache = cache

    async def list_skills(self, spec: Optional[QuerySpec] = None) -> QueryResult:
        """
        Return one page of skills matching the search/category filter.

        ``total`` counts every matching row, not just the returned page.
        """
        spec = spec or QuerySpec()
        empty = QueryResult(items=[], total=0, page=spec.page, page_size=spec.page_size)

        dataset = await self.cache.get_dataset()

        clause, params = build_where_clause(dataset, spec.q, spec.category)
        order = build_order_clause(dataset, spec.sort)
        offset = max(0, (spec.page - 1) * spec.page_size)
        table = dataset.quoted_table

        try:
            count_row = dataset.fetch_one(f"SELECT COUNT(*) AS count FROM {table} {clause}", params)
            total = int(count_row["count"]) if count_row else 0

            rows = dataset.fetch_all(
                f"SELECT {list_columns(dataset)} FROM {table} {clause} {order} LIMIT ? OFFSET ?",
                [*params, spec.page_size, offset],
            )
        except sqlite3.Error as e:
            logger.error(f"Skill list query failed on table {dataset.table}: {e}", exc_info=True)
            return empty

        logger.debug(
            f"list_skills q={spec.q!r} category={spec.category!r} sort={spec.sort} "
            f"page={spec.page}: {len(rows)} of {total}"
        )
        items = [normalize_skill(row, offset + index) for index, row in enumerate(rows)]
        return QueryResult(items=items, total=total, page=spec.page, page_size=spec.page_size)

    async def get_skill_by_identifier(self, identifier: str) -> Optional[SkillRecord]:
        """
        Look up a single skill.

        Purely numeric identifiers match the ``id`` column, anything else
        matches ``skill_name`` exactly. Returns None when nothing matches.
        """
        dataset = await self.cache.get_dataset()
        decoded = unquote(identifier or "")
        if not decoded:
            return None

        table = dataset.quoted_table
        if decoded.isascii() and decoded.isdigit():
            sql = f"SELECT * FROM {table} WHERE id = ? LIMIT 1"
            param: Any = int(decoded)
        else:
            sql = f"SELECT * FROM {table} WHERE skill_name = ? LIMIT 1"
            param = decoded

        try:
            row = dataset.fetch_one(sql, [param])
        except (sqlite3.Error, OverflowError) as e:
            logger.error(f"Skill lookup for {decoded!r} failed: {e}", exc_info=True)
            return None

        if row is None:
            logger.debug(f"Skill not found: {decoded!r}")
            return None
        return normalize_skill(row, 0)

    async def get_skill_summary(self) -> SkillSummary:
        """Count skills per category, one category per skill."""
        dataset = await self.cache.get_dataset()
        column = "categories" if dataset.has_column("categories") else "NULL AS categories"

        try:
            rows = dataset.fetch_all(f"SELECT {column} FROM {dataset.quoted_table}")
        except sqlite3.Error as e:
            logger.error(f"Skill summary query failed: {e}", exc_info=True)
            return SkillSummary()

        counts = {}
        for row in rows:
            category = pick_category(row.get("categories"))
            counts[category] = counts.get(category, 0) + 1
        return SkillSummary(total=len(rows), counts=counts)
