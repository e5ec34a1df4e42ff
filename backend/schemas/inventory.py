from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db.database import MAX_COUNT


TransactionType = Literal["IN", "OUT"]


class InventoryTransactionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Kept as a plain string: an unknown or malformed id is a 404, not a schema error.
    product_id: Optional[str] = Field(default=None, alias="productId")
    transaction_type: TransactionType = Field(alias="transactionType")
    quantity: int = Field(ge=1, le=MAX_COUNT, strict=True)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None
