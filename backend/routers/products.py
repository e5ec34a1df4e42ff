import logging
import uuid
from typing import Dict

from fastapi import APIRouter, Depends, status

from core.auth import require_user_id
from core.exceptions import InvalidArgument, NotFound, PersistenceError
from db.database import utcnow
from db.record_store import RecordStore, RecordStoreError, eq, get_record_store
from schemas.products import ProductCreate
from services.transaction_processor import canonical_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_id(product_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(product_id)
    except ValueError:
        raise NotFound("商品が見つかりません")


async def _ensure_category(store: RecordStore, category_id: uuid.UUID):
    if await store.select_one("categories", [eq("id", category_id)]) is None:
        raise InvalidArgument(
            "入力データが正しくありません",
            details=[{"field": "categoryId", "message": "カテゴリを選択してください"}],
        )


@router.get("", response_model=Dict)
async def list_products(
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    try:
        products = await store.select("products", order_by="created_at", descending=True, embed=True)
    except RecordStoreError as e:
        raise PersistenceError("商品の取得に失敗しました") from e
    return {"products": products}


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    actor = canonical_user_id(user_id)
    try:
        await _ensure_category(store, payload.category_id)
        created = await store.insert(
            "products",
            {
                "name": payload.name,
                "category_id": payload.category_id,
                "price": payload.price,
                "min_stock_threshold": payload.min_stock_threshold,
                "description": payload.description,
                "current_stock": 0,
                "created_by": actor,
                "updated_by": actor,
            },
        )
        product = await store.select_one("products", [eq("id", created["id"])], embed=True)
    except RecordStoreError as e:
        raise PersistenceError("商品の作成に失敗しました") from e
    logger.info("product %s created by %s", created["id"], user_id)
    return {"product": product}


@router.get("/{product_id}", response_model=Dict)
async def get_product(
    product_id: str,
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    pid = _parse_id(product_id)
    try:
        product = await store.select_one("products", [eq("id", pid)], embed=True)
    except RecordStoreError as e:
        raise PersistenceError("商品の取得に失敗しました") from e
    if product is None:
        raise NotFound("商品が見つかりません")
    return {"product": product}


@router.put("/{product_id}", response_model=Dict)
async def update_product(
    product_id: str,
    payload: ProductCreate,
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    """Edit descriptive fields. Stock only moves through /inventory."""
    pid = _parse_id(product_id)
    try:
        await _ensure_category(store, payload.category_id)
        affected = await store.update(
            "products",
            {
                "name": payload.name,
                "category_id": payload.category_id,
                "price": payload.price,
                "min_stock_threshold": payload.min_stock_threshold,
                "description": payload.description,
                "updated_by": canonical_user_id(user_id),
                "updated_at": utcnow(),
            },
            [eq("id", pid)],
        )
        if not affected:
            raise NotFound("商品が見つかりません")
        product = await store.select_one("products", [eq("id", pid)], embed=True)
    except RecordStoreError as e:
        raise PersistenceError("商品の更新に失敗しました") from e
    return {"product": product}


@router.delete("/{product_id}", response_model=Dict)
async def delete_product(
    product_id: str,
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    pid = _parse_id(product_id)
    try:
        affected = await store.delete("products", [eq("id", pid)])
    except RecordStoreError as e:
        raise PersistenceError("商品の削除に失敗しました") from e
    if not affected:
        raise NotFound("商品が見つかりません")
    logger.info("product %s deleted by %s", pid, user_id)
    return {"message": "商品を削除しました"}
