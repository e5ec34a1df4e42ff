import uuid
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base, utcnow


def generate_product_code() -> str:
    return "P" + uuid.uuid4().hex[:8].upper()


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
        CheckConstraint("min_stock_threshold >= 0", name="ck_products_min_stock_threshold_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_code = Column(String, nullable=False, unique=True, default=generate_product_code)
    name = Column(String, nullable=False, index=True)
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

    price = Column(Numeric(12, 2), nullable=False, default=0)
    current_stock = Column(Integer, nullable=False, default=0)
    min_stock_threshold = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    category = relationship("Category", back_populates="products")
    transactions = relationship(
        "InventoryTransaction",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_code": self.product_code,
            "name": self.name,
            "category_id": self.category_id,
            "price": self.price,
            "current_stock": int(self.current_stock or 0),
            "min_stock_threshold": int(self.min_stock_threshold or 0),
            "description": self.description,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
