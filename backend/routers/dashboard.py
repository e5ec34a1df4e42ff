from typing import Dict, List

from fastapi import APIRouter, Depends

from core.auth import require_user_id
from core.exceptions import PersistenceError
from db.record_store import RecordStore, RecordStoreError, get_record_store

router = APIRouter()


def _overview(products: List[dict]) -> dict:
    out_of_stock = 0
    low_stock = 0
    for p in products:
        stock = int(p.get("current_stock") or 0)
        threshold = int(p.get("min_stock_threshold") or 0)
        if stock == 0:
            out_of_stock += 1
        elif stock <= threshold:
            low_stock += 1
    return {
        "totalProducts": len(products),
        "totalStock": sum(int(p.get("current_stock") or 0) for p in products),
        "outOfStock": out_of_stock,
        "lowStock": low_stock,
    }


def _category_stats(categories: List[dict]) -> List[dict]:
    out = []
    for c in categories:
        products = c.get("products") or []
        out.append({
            "id": c["id"],
            "name": c["name"],
            "totalProducts": len(products),
            "totalStock": sum(int(p.get("current_stock") or 0) for p in products),
            # Unlike the overview, zero-stock products count as low here.
            "lowStockCount": sum(
                1 for p in products
                if int(p.get("current_stock") or 0) <= int(p.get("min_stock_threshold") or 0)
            ),
        })
    return out


@router.get("/stats", response_model=Dict)
async def get_dashboard_stats(
    user_id: str = Depends(require_user_id),
    store: RecordStore = Depends(get_record_store),
):
    try:
        products = await store.select("products")
        categories = await store.select("categories", order_by="name", embed=True)
    except RecordStoreError as e:
        raise PersistenceError("データの取得に失敗しました") from e
    return {"overview": _overview(products), "categoryStats": _category_stats(categories)}
