from typing import Dict

from fastapi import APIRouter, Depends, status

from core.auth import require_user_id
from core.exceptions import Conflict, PersistenceError
from db.record_store import ConstraintViolation, RecordStore, RecordStoreError, get_record_store, ieq
from schemas.categories import CategoryCreate, CategoryRead

router = APIRouter()


@router.get("", response_model=Dict)
async def list_categories(
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    try:
        rows = await store.select("categories", order_by="name")
    except RecordStoreError as e:
        raise PersistenceError("カテゴリの取得に失敗しました") from e
    return {"categories": [CategoryRead(**c) for c in rows]}


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    try:
        if await store.select_one("categories", [ieq("name", payload.name)]) is not None:
            raise Conflict("カテゴリは既に存在します")
        created = await store.insert(
            "categories", {"name": payload.name, "description": payload.description}
        )
    except ConstraintViolation as e:
        # lost a race against a concurrent create of the same name
        raise Conflict("カテゴリは既に存在します") from e
    except RecordStoreError as e:
        raise PersistenceError("カテゴリの作成に失敗しました") from e
    return {"category": CategoryRead(**created)}
