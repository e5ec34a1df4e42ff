from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class CategoryRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("カテゴリ名は必須です")
        return v
