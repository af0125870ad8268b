"""
HTTP endpoints for browsing the skill catalog.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from skill_catalog.core.dependencies import get_skill_service
from skill_catalog.domain.errors import DatasetError
from skill_catalog.domain.models import QueryResult, QuerySpec, SkillRecord, SkillSummary
from skill_catalog.services.query import SkillQueryService

logger = logging.getLogger(__name__)
router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ---------------------------------------------------------------------------
# 1. GET /skills
# ---------------------------------------------------------------------------

@router.get("/skills", response_model=QueryResult)
async def list_skills(
    q: str = Query(default="", description="Substring searched across names, descriptions and tags."),
    category: str = Query(default="", description="Substring matched against the categories column."),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=16, ge=1, alias="pageSize"),
    sort: str = Query(default="latest", description="'latest', 'oldest' or 'stars'."),
    service: SkillQueryService = Depends(get_skill_service),
):
    """
    Paginated, searchable skill listing.
    """
    spec = QuerySpec(q=q, category=category, page=page, page_size=page_size, sort=sort)
    try:
        return await service.list_skills(spec)
    except DatasetError as e:
        logger.error(f"Failed to list skills: {e}")
        return _error(500, str(e) or "Failed to load skills")


# ---------------------------------------------------------------------------
# 2. GET /skills/summary
# ---------------------------------------------------------------------------

@router.get("/skills/summary", response_model=SkillSummary)
async def get_skill_summary(service: SkillQueryService = Depends(get_skill_service)):
    """
    Total number of skills and the count per category.
    """
    try:
        return await service.get_skill_summary()
    except DatasetError as e:
        logger.error(f"Failed to load summary: {e}")
        return _error(500, str(e) or "Failed to load summary")


# ---------------------------------------------------------------------------
# 3. GET /skills/{identifier}
# ---------------------------------------------------------------------------

@router.get("/skills/{identifier:path}", response_model=SkillRecord)
async def get_skill(identifier: str, service: SkillQueryService = Depends(get_skill_service)):
    """
    A single skill addressed by numeric id or (URL-encoded) skill name.
    """
    try:
        skill = await service.get_skill_by_identifier(identifier)
    except DatasetError as e:
        logger.error(f"Failed to load skill {identifier}: {e}")
        return _error(500, str(e) or "Failed to load skill")
    if skill is None:
        return _error(404, "Skill not found")
    return skill
