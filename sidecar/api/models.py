"""Request and response models for the file manager API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class FileInfo(BaseModel):
    """One directory entry."""

    name: str
    size: int
    is_dir: bool
    modified: datetime


class PathRequest(BaseModel):
    """Body of the delete and create-dir endpoints."""

    path: str = Field(..., description="Path relative to the data root")
