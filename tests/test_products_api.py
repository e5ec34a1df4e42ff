import uuid
from datetime import datetime, timezone


def product_body(category, **overrides):
    body = {
        "name": "ワイヤレスマウス",
        "categoryId": str(category["id"]),
        "price": 2480,
        "minStockThreshold": 10,
        "description": "2.4GHz",
    }
    body.update(overrides)
    return body


async def test_create_product_starts_with_zero_stock(client, store, category):
    res = await client.post("/products", json=product_body(category))

    assert res.status_code == 201
    product = res.json()["product"]
    assert product["name"] == "ワイヤレスマウス"
    assert product["current_stock"] == 0
    assert product["min_stock_threshold"] == 10
    assert product["product_code"].startswith("P")
    assert product["category"] == {"id": str(category["id"]), "name": "電子機器"}
    assert product["created_by"] == "6f1c2a8e-3b4d-4e5f-8a9b-0c1d2e3f4a5b"


async def test_create_product_with_unknown_category_is_rejected(client, store, category):
    res = await client.post("/products", json=product_body(category, categoryId=str(uuid.uuid4())))

    assert res.status_code == 400
    assert store.rows("products") == []


async def test_create_product_validates_body(client, category):
    for overrides in ({"name": "   "}, {"price": -1}, {"minStockThreshold": -5}, {"categoryId": "x"}):
        res = await client.post("/products", json=product_body(category, **overrides))
        assert res.status_code == 400, overrides
        assert res.json()["error"] == "入力データが正しくありません"


async def test_list_products_newest_first(client, store, category):
    store.add_product("古い", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc), category_id=category["id"])
    store.add_product("新しい", created_at=datetime(2024, 6, 1, tzinfo=timezone.utc))

    res = await client.get("/products")

    assert res.status_code == 200
    products = res.json()["products"]
    assert [p["name"] for p in products] == ["新しい", "古い"]
    assert products[0]["category"] is None
    assert products[1]["category"]["name"] == "電子機器"


async def test_get_product(client, store):
    product = store.add_product("ボールペン", current_stock=7)

    res = await client.get(f"/products/{product['id']}")

    assert res.status_code == 200
    assert res.json()["product"]["current_stock"] == 7


async def test_get_missing_product_is_404(client):
    for pid in (uuid.uuid4(), "not-a-uuid"):
        res = await client.get(f"/products/{pid}")
        assert res.status_code == 404
        assert res.json() == {"error": "商品が見つかりません"}


async def test_update_product_keeps_stock(client, store, category):
    product = store.add_product("旧名", current_stock=12)

    res = await client.put(f"/products/{product['id']}", json=product_body(category, name="新名", price=99.5))

    assert res.status_code == 200
    updated = res.json()["product"]
    assert updated["name"] == "新名"
    assert updated["current_stock"] == 12
    assert updated["category"]["id"] == str(category["id"])
    assert store.product(product["id"])["updated_by"] == uuid.UUID("6f1c2a8e-3b4d-4e5f-8a9b-0c1d2e3f4a5b")


async def test_update_missing_product_is_404(client, category):
    res = await client.put(f"/products/{uuid.uuid4()}", json=product_body(category))

    assert res.status_code == 404


async def test_delete_product(client, store):
    product = store.add_product()

    res = await client.delete(f"/products/{product['id']}")
    assert res.status_code == 200
    assert res.json() == {"message": "商品を削除しました"}

    res = await client.delete(f"/products/{product['id']}")
    assert res.status_code == 404


async def test_products_store_failure_is_500(client, store):
    store.fail("select", "products")

    res = await client.get("/products")

    assert res.status_code == 500
    assert res.json() == {"error": "商品の取得に失敗しました"}


async def test_products_require_authentication(anonymous_client):
    res = await anonymous_client.get("/products")

    assert res.status_code == 401
