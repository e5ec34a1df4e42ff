"""
Stock movement history.

Rows are append-only: written once by the transaction processor and only
deleted as the compensating step when the matching stock update fails.
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        CheckConstraint("transaction_type IN ('IN', 'OUT')", name="ck_inventory_transactions_type"),
        CheckConstraint("quantity >= 1", name="ck_inventory_transactions_quantity_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    transaction_type = Column(Text, nullable=False, index=True)  # 'IN' | 'OUT'
    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    transaction_date = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    product = relationship("Product", back_populates="transactions")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "quantity": int(self.quantity),
            "notes": self.notes,
            "transaction_date": self.transaction_date,
            "created_at": self.created_at,
        }
