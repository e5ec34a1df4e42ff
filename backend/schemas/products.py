from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db.database import MAX_COUNT


class ProductCreate(BaseModel):
    """Body of POST /products and PUT /products/{id}."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    category_id: UUID = Field(alias="categoryId")
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    min_stock_threshold: int = Field(alias="minStockThreshold", ge=0, le=MAX_COUNT)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("商品名は必須です")
        return v

    @field_validator("description")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
