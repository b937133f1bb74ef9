"""Pydantic models describing registered modules."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ModuleDescriptor(BaseModel):
    """Metadata for a callable registered under ``category.module.function``."""

    path: str
    description: Optional[str] = None
    is_async: bool = False
    parameters: List[str] = Field(default_factory=list)

    @field_validator("path")
    @classmethod
    def _ensure_path(cls, v: str) -> str:
        if not v or any(not part for part in v.split(".")):
            raise ValueError("module path must be a non-empty dotted name")
        return v

    @property
    def category(self) -> str:
        return self.path.split(".", 1)[0]
