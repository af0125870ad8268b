"""
Map dataset rows with mixed naming conventions onto ``SkillRecord``.

Dataset producers are not consistent about column names, so every canonical
field lists the keys it may be read from, in precedence order: snake_case,
then camelCase, then any semantic alias.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

from skill_catalog.domain.models import SkillRecord
from skill_catalog.domain.skill_utils import parse_array_value, pick_category

# Characters encodeURIComponent leaves untouched, so identifiers stay
# compatible with links generated by existing clients.
URI_COMPONENT_SAFE = "-_.!~*'()"

FIELD_SOURCES: Dict[str, Tuple[str, ...]] = {
    "skill_name": ("skill_name", "skillName", "name"),
    "from_repo": ("from_repo", "fromRepo"),
    "skill_path": ("skill_path", "skillPath"),
    "repostars": ("repostars", "repo_stars", "repoStars", "stars"),
    "tagline": ("tagline",),
    "tags": ("tags",),
    "tags_en": ("tags_en", "tagsEn"),
    "categories": ("categories",),
    "description_zh": ("description_zh", "descriptionZh", "description"),
    "description_en": ("description_en", "descriptionEn"),
    "use_case": ("use_case", "useCase"),
    "use_case_en": ("use_case_en", "useCaseEn"),
    "download_url": ("download_url", "downloadUrl"),
    "skill_md_content": ("skill_md_content", "skillMdContent"),
    "skill_md_content_translation": (
        "skill_md_content_translation",
        "skillMdContentTranslation",
    ),
    "file_tree": ("file_tree", "fileTree"),
    "how_to_install": ("how_to_install", "howToInstall"),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}

# Large text columns left out of list queries.
CONTENT_FIELDS = ("skill_md_content", "skill_md_content_translation", "file_tree", "how_to_install")


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def pick_field(row: Mapping[str, Any], field: str) -> Optional[Any]:
    """Return the first present value for ``field`` following ``FIELD_SOURCES``."""
    for key in FIELD_SOURCES[field]:
        value = row.get(key)
        if not _is_missing(value):
            return value
    return None


def _text(row: Mapping[str, Any], field: str) -> str:
    value = pick_field(row, field)
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _int(row: Mapping[str, Any], field: str) -> int:
    value = pick_field(row, field)
    if value is None:
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _clean_id(row_id: Any) -> Any:
    # REAL columns hand back 1.0 for integral ids; keep them addressable as "1"
    if isinstance(row_id, float) and row_id.is_integer():
        return int(row_id)
    return row_id


def make_identifier(row_id: Any, skill_name: str, index: int) -> str:
    """
    Derive the public identifier of a row.

    Explicit ``id`` first, then the URL-encoded skill name, then the 1-based
    position of the row. Empty values count as absent.
    """
    if not _is_missing(row_id):
        return str(_clean_id(row_id))
    if skill_name:
        return quote(skill_name, safe=URI_COMPONENT_SAFE)
    return str(index + 1)


def normalize_skill(row: Mapping[str, Any], index: int) -> SkillRecord:
    """Build a ``SkillRecord`` from a raw row and its position in the result set."""
    skill_name = _text(row, "skill_name")
    categories = parse_array_value(pick_field(row, "categories"))
    description_zh = _text(row, "description_zh")

    row_id = _clean_id(row.get("id"))
    identifier = make_identifier(row_id, skill_name, index)

    return SkillRecord(
        id=row_id if isinstance(row_id, (int, str)) and not _is_missing(row_id) else identifier,
        identifier=identifier,
        skill_name=skill_name,
        from_repo=_text(row, "from_repo"),
        skill_path=_text(row, "skill_path"),
        repostars=_int(row, "repostars"),
        tagline=_text(row, "tagline"),
        tags=parse_array_value(pick_field(row, "tags")),
        tags_en=parse_array_value(pick_field(row, "tags_en")),
        categories=categories,
        category=categories[0] if categories else pick_category(row.get("categories")),
        description=description_zh,
        description_zh=description_zh,
        description_en=_text(row, "description_en"),
        use_case=_text(row, "use_case"),
        use_case_en=_text(row, "use_case_en"),
        download_url=_text(row, "download_url"),
        skill_md_content=_text(row, "skill_md_content"),
        skill_md_content_translation=_text(row, "skill_md_content_translation"),
        file_tree=_text(row, "file_tree"),
        how_to_install=_text(row, "how_to_install"),
        created_at=_text(row, "created_at"),
        updated_at=_text(row, "updated_at"),
    )
