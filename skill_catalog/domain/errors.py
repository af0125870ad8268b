"""
Exceptions raised while loading the skill dataset.

Query code never raises these for ordinary lookups; they surface when the
dataset itself cannot be obtained or opened.
"""
from __future__ import annotations

from typing import Optional


class DatasetError(Exception):
    """Base class for every dataset loading failure."""


class NoTableFound(DatasetError):
    """The dataset opened fine but contains no user table."""


class ParseError(DatasetError):
    """The bytes are not a valid SQLite database."""


class FetchFailed(DatasetError):
    """The remote dataset could not be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceUnavailable(DatasetError):
    """The local dataset file is missing or unreadable."""
