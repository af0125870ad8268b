"""
Environment-driven settings and dataset source resolution.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from skill_catalog.domain.models import DataSource, SourceType

REMOTE_URL_ENV_VARS = ("SKILL_DB_URL", "SKILL_DB_PUBLIC_URL")
LOCAL_PATH_ENV_VAR = "SKILL_DB_PATH"
REVALIDATE_ENV_VAR = "SKILL_DB_REVALIDATE_MS"
FETCH_TIMEOUT_ENV_VAR = "SKILL_DB_FETCH_TIMEOUT"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DB_PATH = _REPO_ROOT / "data" / "skill.db"

DEFAULT_REVALIDATE_MS = 4 * 60 * 60 * 1000
DEFAULT_FETCH_TIMEOUT = 60.0


class StoreSettings(BaseModel):
    """Settings for locating and refreshing the skill dataset."""

    remote_url: str = Field(default="", description="Remote dataset URL; ignored unless http(s).")
    local_path: str = Field(default=str(DEFAULT_DB_PATH), description="Local dataset file.")
    revalidate_ms: int = Field(
        default=DEFAULT_REVALIDATE_MS,
        description="How long a loaded dataset is served before its source is checked again.",
    )
    fetch_timeout: float = Field(default=DEFAULT_FETCH_TIMEOUT, description="HTTP timeout in seconds.")


def _positive_number(raw: Optional[str], default, cast):
    if not raw:
        return default
    try:
        value = cast(raw.strip())
    except (ValueError, OverflowError):
        return default
    return value if value > 0 else default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> StoreSettings:
    """
    Build settings from the environment.

    Priority for the remote URL: SKILL_DB_URL, then SKILL_DB_PUBLIC_URL.
    Invalid or non-positive numbers fall back to the defaults.
    """
    env = os.environ if environ is None else environ

    remote_url = ""
    for name in REMOTE_URL_ENV_VARS:
        value = (env.get(name) or "").strip()
        if value:
            remote_url = value
            break

    local_path = (env.get(LOCAL_PATH_ENV_VAR) or "").strip()
    if local_path:
        local_path = str(Path(local_path).expanduser())
    else:
        local_path = str(DEFAULT_DB_PATH)

    return StoreSettings(
        remote_url=remote_url,
        local_path=local_path,
        revalidate_ms=_positive_number(env.get(REVALIDATE_ENV_VAR), DEFAULT_REVALIDATE_MS, lambda s: int(float(s))),
        fetch_timeout=_positive_number(env.get(FETCH_TIMEOUT_ENV_VAR), DEFAULT_FETCH_TIMEOUT, float),
    )


def is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def resolve_source(settings: StoreSettings) -> DataSource:
    """Pick the remote URL when it is a valid http(s) URL, the local file otherwise."""
    if settings.remote_url and is_http_url(settings.remote_url):
        return DataSource(type=SourceType.REMOTE, key=settings.remote_url, locator=settings.remote_url)
    return DataSource(type=SourceType.LOCAL, key=settings.local_path, locator=settings.local_path)
