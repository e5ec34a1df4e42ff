"""SQLAlchemyRecordStore against an in-memory SQLite database."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.exceptions import InsufficientStock, InvalidArgument
from db.database import Base
from db.record_store import ConstraintViolation, Delta, RecordStoreError, SQLAlchemyRecordStore, eq, gte, ieq, lte
from services.transaction_processor import MovementRequest, TransactionProcessor


@pytest_asyncio.fixture
async def sql_store():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as session:
        yield SQLAlchemyRecordStore(session)
    await engine.dispose()


async def seed_product(store, stock=10, threshold=2, with_category=True):
    category_id = None
    if with_category:
        category = await store.insert("categories", {"name": "工具"})
        category_id = category["id"]
    return await store.insert(
        "products",
        {
            "name": "ドライバー",
            "category_id": category_id,
            "price": Decimal("480"),
            "current_stock": stock,
            "min_stock_threshold": threshold,
        },
    )


async def test_insert_fills_defaults(sql_store):
    product = await seed_product(sql_store)

    assert isinstance(product["id"], uuid.UUID)
    assert product["product_code"].startswith("P")
    assert product["current_stock"] == 10
    assert product["created_at"] is not None


async def test_select_one_embeds_related_rows(sql_store):
    product = await seed_product(sql_store)
    tx = await sql_store.insert(
        "inventory_transactions",
        {"product_id": product["id"], "transaction_type": "IN", "quantity": 2},
    )

    row = await sql_store.select_one("inventory_transactions", [eq("id", tx["id"])], embed=True)

    assert row["product"]["name"] == "ドライバー"
    assert row["product"]["category"]["name"] == "工具"

    plain = await sql_store.select_one("products", [eq("id", str(product["id"]))])
    assert "category" not in plain

    assert await sql_store.select_one("products", [eq("id", uuid.uuid4())]) is None


async def test_conditional_delta_update_is_guarded(sql_store):
    product = await seed_product(sql_store, stock=3)
    guard = [eq("id", product["id"]), gte("current_stock", 5)]

    assert await sql_store.update("products", {"current_stock": Delta(-5)}, guard) == 0
    row = await sql_store.select_one("products", [eq("id", product["id"])])
    assert row["current_stock"] == 3

    assert await sql_store.update("products", {"current_stock": Delta(7)}, [eq("id", product["id"])]) == 1
    assert await sql_store.update("products", {"current_stock": Delta(-5)}, guard) == 1
    row = await sql_store.select_one("products", [eq("id", product["id"])])
    assert row["current_stock"] == 5


async def test_negative_stock_is_refused_by_the_database(sql_store):
    product = await seed_product(sql_store, stock=1)

    with pytest.raises(RecordStoreError):
        await sql_store.update("products", {"current_stock": Delta(-2)}, [eq("id", product["id"])])

    # the session is usable again after the failed statement
    row = await sql_store.select_one("products", [eq("id", product["id"])])
    assert row["current_stock"] == 1


async def test_select_orders_filters_and_limits(sql_store):
    product = await seed_product(sql_store)
    base = datetime(2025, 3, 1, tzinfo=timezone.utc)
    for day in range(4):
        await sql_store.insert(
            "inventory_transactions",
            {
                "product_id": product["id"],
                "transaction_type": "IN",
                "quantity": day + 1,
                "transaction_date": base + timedelta(days=day),
            },
        )

    rows = await sql_store.select(
        "inventory_transactions",
        [gte("transaction_date", base + timedelta(days=1)), lte("transaction_date", base + timedelta(days=3))],
        order_by="transaction_date",
        descending=True,
        limit=2,
    )

    assert [r["quantity"] for r in rows] == [4, 3]


async def test_delete_reports_rows_removed(sql_store):
    product = await seed_product(sql_store)

    assert await sql_store.delete("products", [eq("id", product["id"])]) == 1
    assert await sql_store.delete("products", [eq("id", product["id"])]) == 0


async def test_category_embed_lists_products(sql_store):
    await seed_product(sql_store)

    categories = await sql_store.select("categories", embed=True)

    assert [p["name"] for p in categories[0]["products"]] == ["ドライバー"]


async def test_unknown_table_or_column(sql_store):
    with pytest.raises(ValueError):
        await sql_store.select("warehouses")
    with pytest.raises(ValueError):
        await sql_store.select("products", [eq("colour", "red")])


async def test_processor_round_trip(sql_store):
    product = await seed_product(sql_store, stock=3)
    processor = TransactionProcessor(sql_store)

    result = await processor.apply(
        MovementRequest(product_id=str(product["id"]), transaction_type="OUT", quantity=3)
    )
    assert result.transaction["product"]["current_stock"] == 0
    assert result.transaction["user_id"] is None

    with pytest.raises(InsufficientStock):
        await processor.apply(
            MovementRequest(product_id=str(product["id"]), transaction_type="OUT", quantity=1)
        )

    history = await processor.history(product_id=product["id"])
    assert [t["quantity"] for t in history] == [3]


async def test_out_of_range_integer_is_a_store_error(sql_store):
    product = await seed_product(sql_store)

    with pytest.raises(RecordStoreError):
        await sql_store.insert(
            "inventory_transactions",
            {"product_id": product["id"], "transaction_type": "IN", "quantity": 2**63},
        )

    assert await sql_store.select("inventory_transactions") == []


async def test_category_names_match_and_collide_ignoring_case(sql_store):
    await sql_store.insert("categories", {"name": "Tools"})

    found = await sql_store.select_one("categories", [ieq("name", "tOOLS")])
    assert found["name"] == "Tools"

    with pytest.raises(ConstraintViolation):
        await sql_store.insert("categories", {"name": "TOOLS"})
    assert len(await sql_store.select("categories")) == 1


async def test_processor_refuses_quantities_beyond_the_column(sql_store):
    product = await seed_product(sql_store, stock=0)
    processor = TransactionProcessor(sql_store)

    with pytest.raises(InvalidArgument):
        await processor.apply(
            MovementRequest(product_id=str(product["id"]), transaction_type="IN", quantity=2**63)
        )

    assert await sql_store.select("inventory_transactions") == []
