"""
Table-oriented persistence used by the routers and the transaction processor.

RecordStore is the capability the application depends on; SQLAlchemyRecordStore
is the Postgres-backed implementation wired in through `get_record_store`.
Rows cross this boundary as plain dicts so alternative stores (tests, other
backends) only have to speak dicts too.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Iterable
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends
from sqlalchemy import delete as sa_delete, func, select, update as sa_update
from sqlalchemy import types as sqltypes
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .category import Category
from .database import get_async_session
from .inventory_transaction import InventoryTransaction
from .product import Product
from . import users  # noqa: F401  (users table must be registered for the FKs)

logger = logging.getLogger(__name__)

FILTER_OPS = ("eq", "ieq", "gte", "lte")

# Driver-level errors some DBAPIs raise without SQLAlchemy wrapping them
# (sqlite3 binding an int wider than 64 bits, for one).
STORE_ERRORS = (SQLAlchemyError, OverflowError)


class RecordStoreError(Exception):
    """The backing store failed to execute an operation."""


class ConstraintViolation(RecordStoreError):
    """A write was refused by a unique, check or foreign key constraint."""


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"unsupported filter op: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def ieq(column: str, value: str) -> Filter:
    """Case-insensitive string equality."""
    return Filter(column, "ieq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


@dataclass(frozen=True)
class Delta:
    """Patch value applied relative to the stored one: `column = column + amount`."""

    amount: int


class RecordStore(ABC):

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        embed: bool = False,
    ) -> list[dict]:
        ...

    @abstractmethod
    async def select_one(self, table: str, filters: Iterable[Filter], embed: bool = False) -> Optional[dict]:
        """Return the first matching row, or None when nothing matches."""

    @abstractmethod
    async def insert(self, table: str, row: dict) -> dict:
        ...

    @abstractmethod
    async def update(self, table: str, patch: dict, filters: Iterable[Filter]) -> int:
        """Apply `patch` to every matching row in one statement; return rows affected."""

    @abstractmethod
    async def delete(self, table: str, filters: Iterable[Filter]) -> int:
        ...


# --- embedding (joined reads) ---------------------------------------------

def _category_ref(category: Optional[Category]) -> Optional[dict]:
    if category is None:
        return None
    return {"id": category.id, "name": category.name}


def _product_ref(product: Optional[Product]) -> Optional[dict]:
    if product is None:
        return None
    return {
        "id": product.id,
        "product_code": product.product_code,
        "name": product.name,
        "current_stock": int(product.current_stock or 0),
        "min_stock_threshold": int(product.min_stock_threshold or 0),
        "category": _category_ref(product.category),
    }


def _serialize(table: str, obj: Any, embed: bool) -> dict:
    row = obj.to_schema
    if not embed:
        return row
    if table == "inventory_transactions":
        row["product"] = _product_ref(obj.product)
    elif table == "products":
        row["category"] = _category_ref(obj.category)
    elif table == "categories":
        row["products"] = [p.to_schema for p in obj.products]
    return row


_EMBED_OPTIONS = {
    "inventory_transactions": lambda: [
        selectinload(InventoryTransaction.product).selectinload(Product.category)
    ],
    "products": lambda: [selectinload(Product.category)],
    "categories": lambda: [selectinload(Category.products)],
}


class SQLAlchemyRecordStore(RecordStore):
    """RecordStore over an AsyncSession. Every write commits (or rolls back) on its own."""

    tables = {
        "categories": Category,
        "products": Product,
        "inventory_transactions": InventoryTransaction,
    }

    def __init__(self, session: AsyncSession):
        self.session = session

    def _model(self, table: str):
        model = self.tables.get(table)
        if model is None:
            raise ValueError(f"unknown table: {table}")
        return model

    @staticmethod
    def _column(model, name: str):
        col = model.__table__.c.get(name)
        if col is None:
            raise ValueError(f"unknown column {model.__tablename__}.{name}")
        return col

    @staticmethod
    def _coerce(col, value):
        if isinstance(value, str) and isinstance(col.type, sqltypes.Uuid):
            try:
                return uuid.UUID(value)
            except ValueError:
                raise ValueError(f"invalid uuid for {col.name}: {value!r}")
        return value

    def _where(self, model, filters: Iterable[Filter]) -> list:
        clauses = []
        for f in filters:
            col = self._column(model, f.column)
            value = self._coerce(col, f.value)
            if f.op == "eq":
                clauses.append(col.is_(None) if value is None else col == value)
            elif f.op == "ieq":
                clauses.append(func.lower(col) == str(value).lower())
            elif f.op == "gte":
                clauses.append(col >= value)
            else:
                clauses.append(col <= value)
        return clauses

    async def _fail(self, what: str, e: Exception):
        await self.session.rollback()
        logger.error("%s failed: %r", what, e)
        error_cls = ConstraintViolation if isinstance(e, IntegrityError) else RecordStoreError
        raise error_cls(str(e)) from e

    async def _execute(self, stmt, *, write: bool):
        try:
            res = await self.session.execute(stmt)
            if write:
                await self.session.commit()
                # bulk statements bypass the identity map
                self.session.expire_all()
            return res
        except STORE_ERRORS as e:
            await self._fail("record store statement", e)

    async def select(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        embed: bool = False,
    ) -> list[dict]:
        model = self._model(table)
        stmt = select(model).where(*self._where(model, filters))
        if order_by:
            col = self._column(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if embed:
            stmt = stmt.options(*_EMBED_OPTIONS[table]())
        # Rows may already sit in the identity map with values from before a
        # bulk UPDATE, so always overwrite them with what the database holds.
        stmt = stmt.execution_options(populate_existing=True)
        res = await self._execute(stmt, write=False)
        return [_serialize(table, obj, embed) for obj in res.scalars().all()]

    async def select_one(self, table: str, filters: Iterable[Filter], embed: bool = False) -> Optional[dict]:
        rows = await self.select(table, filters, limit=1, embed=embed)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict) -> dict:
        model = self._model(table)
        obj = model(**{key: self._coerce(self._column(model, key), value) for key, value in row.items()})
        self.session.add(obj)
        try:
            await self.session.commit()
        except STORE_ERRORS as e:
            await self._fail(f"insert into {table}", e)
        return obj.to_schema

    async def update(self, table: str, patch: dict, filters: Iterable[Filter]) -> int:
        model = self._model(table)
        values = {}
        for key, value in patch.items():
            col = self._column(model, key)
            values[key] = col + value.amount if isinstance(value, Delta) else self._coerce(col, value)
        stmt = sa_update(model.__table__).where(*self._where(model, filters)).values(**values)
        res = await self._execute(stmt, write=True)
        return res.rowcount

    async def delete(self, table: str, filters: Iterable[Filter]) -> int:
        model = self._model(table)
        stmt = sa_delete(model.__table__).where(*self._where(model, filters))
        res = await self._execute(stmt, write=True)
        return res.rowcount


async def get_record_store(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncGenerator[RecordStore, None]:
    yield SQLAlchemyRecordStore(session)
