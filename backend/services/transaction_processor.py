"""
Stock movements (IN/OUT) against products.

A movement is persisted in two steps: the history row first, then the stock
change as a single conditional UPDATE (`current_stock = current_stock + delta`,
guarded by `current_stock >= quantity` for OUT and by the Integer column's
upper bound for IN). If the UPDATE fails or matches nothing, the history row
is deleted again. That delete is best effort: when it
fails too, the row stays behind and a warning is logged.

States of one request:

    Received -> Validated -> HistoryWritten -> StockUpdated -> Confirmed
    Received/Validated -> Rejected
    HistoryWritten -> RolledBack
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from core.exceptions import InsufficientStock, InvalidArgument, NotFound, PersistenceError
from db.database import MAX_COUNT
from db.record_store import Delta, RecordStore, RecordStoreError, eq, gte, lte

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("IN", "OUT")
DEFAULT_HISTORY_LIMIT = 50

_CANONICAL_UUID = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


class MovementState(str, Enum):
    RECEIVED = "Received"
    VALIDATED = "Validated"
    HISTORY_WRITTEN = "HistoryWritten"
    STOCK_UPDATED = "StockUpdated"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    ROLLED_BACK = "RolledBack"


def canonical_user_id(value: Any) -> Optional[uuid.UUID]:
    """Return the acting user's id if it has the 8-4-4-4-12 hex shape, else None.

    Callers with a non-canonical id are not rejected; the movement is simply
    recorded without a user.
    """
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    text = str(value)
    if not _CANONICAL_UUID.fullmatch(text):
        return None
    return uuid.UUID(text)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stock_limit_exceeded(current_stock: int, quantity: int) -> InvalidArgument:
    return InvalidArgument(
        "在庫数の上限を超えます",
        details={"currentStock": current_stock, "requestedQuantity": quantity, "maxStock": MAX_COUNT},
    )


@dataclass
class MovementRequest:
    product_id: Any
    transaction_type: str
    quantity: Any
    notes: Optional[str] = None
    acting_user: Optional[str] = None


@dataclass
class MovementResult:
    transaction: dict
    status_code: int = 201


class TransactionProcessor:
    """Validates and applies stock movements through a RecordStore."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    async def apply(self, request: MovementRequest) -> MovementResult:
        kind, quantity = self._validate(request)
        product_id = self._parse_product_id(request.product_id)
        self._trace(MovementState.RECEIVED, product_id, kind, quantity)

        try:
            product = await self.store.select_one("products", [eq("id", product_id)])
        except RecordStoreError as e:
            logger.error("product %s lookup failed: %r", product_id, e)
            raise PersistenceError("商品の取得に失敗しました") from e
        if product is None:
            self._trace(MovementState.REJECTED, product_id, kind, quantity)
            raise NotFound("商品が見つかりません")

        current_stock = int(product["current_stock"])
        delta = quantity if kind == "IN" else -quantity
        if current_stock + delta < 0:
            self._trace(MovementState.REJECTED, product_id, kind, quantity)
            raise InsufficientStock(current_stock, quantity)
        if current_stock + delta > MAX_COUNT:
            self._trace(MovementState.REJECTED, product_id, kind, quantity)
            raise _stock_limit_exceeded(current_stock, quantity)
        self._trace(MovementState.VALIDATED, product_id, kind, quantity)

        now = self.clock()
        user_id = canonical_user_id(request.acting_user)
        try:
            history = await self.store.insert(
                "inventory_transactions",
                {
                    "product_id": product_id,
                    "user_id": user_id,
                    "transaction_type": kind,
                    "quantity": quantity,
                    "notes": request.notes or None,
                    "transaction_date": now,
                    "created_at": now,
                },
            )
        except RecordStoreError as e:
            logger.error("history insert for product %s failed: %r", product_id, e)
            raise PersistenceError("履歴の記録に失敗しました") from e
        transaction_id = history["id"]
        self._trace(MovementState.HISTORY_WRITTEN, product_id, kind, quantity)

        filters = [eq("id", product_id)]
        if delta < 0:
            filters.append(gte("current_stock", quantity))
        else:
            filters.append(lte("current_stock", MAX_COUNT - quantity))
        try:
            affected = await self.store.update(
                "products",
                {"current_stock": Delta(delta), "updated_at": now, "updated_by": user_id},
                filters,
            )
        except RecordStoreError as e:
            logger.error("stock update for product %s failed: %r", product_id, e)
            await self._compensate(transaction_id)
            self._trace(MovementState.ROLLED_BACK, product_id, kind, quantity)
            raise PersistenceError("在庫の更新に失敗しました") from e

        if affected == 0:
            # Another writer drained the stock (or removed the product) after our read.
            await self._compensate(transaction_id)
            self._trace(MovementState.ROLLED_BACK, product_id, kind, quantity)
            await self._raise_lost_race(product_id, kind, quantity)
        self._trace(MovementState.STOCK_UPDATED, product_id, kind, quantity)

        try:
            transaction = await self.store.select_one(
                "inventory_transactions", [eq("id", transaction_id)], embed=True
            )
        except RecordStoreError as e:
            logger.error("movement %s applied but reading it back failed: %r", transaction_id, e)
            raise PersistenceError("履歴の取得に失敗しました") from e
        if transaction is None:
            logger.error("movement %s applied but is missing on read back", transaction_id)
            raise PersistenceError("履歴の取得に失敗しました")

        self._trace(MovementState.CONFIRMED, product_id, kind, quantity)
        return MovementResult(transaction=transaction)

    async def history(
        self,
        product_id: Any = None,
        transaction_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[dict]:
        """Movements newest first, each with its product and category inlined."""
        filters = []
        if product_id is not None:
            try:
                pid = product_id if isinstance(product_id, uuid.UUID) else uuid.UUID(str(product_id))
            except ValueError:
                raise InvalidArgument("商品IDが正しくありません")
            filters.append(eq("product_id", pid))
        # Unknown types are ignored rather than rejected.
        if transaction_type in TRANSACTION_TYPES:
            filters.append(eq("transaction_type", transaction_type))
        if start_date is not None:
            filters.append(gte("transaction_date", start_date))
        if end_date is not None:
            filters.append(lte("transaction_date", end_date))

        try:
            return await self.store.select(
                "inventory_transactions",
                filters,
                order_by="transaction_date",
                descending=True,
                limit=limit,
                embed=True,
            )
        except RecordStoreError as e:
            logger.error("history query failed: %r", e)
            raise PersistenceError("履歴の取得に失敗しました") from e

    @staticmethod
    def _validate(request: MovementRequest) -> tuple[str, int]:
        kind = request.transaction_type
        if kind not in TRANSACTION_TYPES:
            raise InvalidArgument(
                "無効な取引種別です",
                details=[{"field": "transactionType", "message": "入出庫種別を選択してください"}],
            )
        quantity = request.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidArgument(
                "入力データが正しくありません",
                details=[{"field": "quantity", "message": "数量は1以上で入力してください"}],
            )
        if quantity > MAX_COUNT:
            raise InvalidArgument(
                "入力データが正しくありません",
                details=[{"field": "quantity", "message": f"数量は{MAX_COUNT}以下で入力してください"}],
            )
        return kind, quantity

    @staticmethod
    def _parse_product_id(value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if value is None:
            raise NotFound("商品が見つかりません")
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise NotFound("商品が見つかりません")

    async def _compensate(self, transaction_id) -> bool:
        try:
            await self.store.delete("inventory_transactions", [eq("id", transaction_id)])
        except RecordStoreError as e:
            logger.warning(
                "compensating delete of transaction %s failed, history row is orphaned: %r",
                transaction_id, e,
            )
            return False
        logger.info("rolled back history row %s", transaction_id)
        return True

    async def _raise_lost_race(self, product_id: uuid.UUID, kind: str, quantity: int):
        try:
            latest = await self.store.select_one("products", [eq("id", product_id)])
        except RecordStoreError as e:
            logger.error("product %s re-read after rejected update failed: %r", product_id, e)
            raise PersistenceError("在庫の更新に失敗しました") from e
        if latest is None:
            raise NotFound("商品が見つかりません")
        if kind == "IN":
            raise _stock_limit_exceeded(int(latest["current_stock"]), quantity)
        raise InsufficientStock(int(latest["current_stock"]), quantity)

    @staticmethod
    def _trace(state: MovementState, product_id, kind: str, quantity: int):
        logger.debug("movement %s %s x%d on product %s", state.value, kind, quantity, product_id)
