import asyncio
import sys
from decimal import Decimal
from pathlib import Path

"""
Seed a demo user, categories and products into the Postgres DB.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`

Running it twice is harmless: existing rows are matched by email / name.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select  # noqa: E402

from db.category import Category  # noqa: E402
from db.database import async_session_maker, create_db_and_tables  # noqa: E402
from db.product import Product  # noqa: E402
from db.users import User  # noqa: E402

from fastapi_users.password import PasswordHelper  # noqa: E402


password_helper = PasswordHelper()

DEMO_EMAIL = "admin@example.com"
DEMO_PASSWORD = "password123"

CATEGORIES = {
    "電子機器": "PC・周辺機器",
    "文房具": "オフィス用品",
    "食品": None,
}

# (name, category, price, initial stock, min stock threshold)
PRODUCTS = [
    ("ノートパソコン", "電子機器", Decimal("98000"), 12, 5),
    ("ワイヤレスマウス", "電子機器", Decimal("2480"), 3, 10),
    ("ボールペン(黒)", "文房具", Decimal("120"), 0, 50),
    ("A4コピー用紙", "文房具", Decimal("650"), 80, 20),
    ("ミネラルウォーター", "食品", Decimal("100"), 24, 24),
]


async def get_or_create_user(session, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        name="管理者",
        hashed_password=password_helper.hash(password),
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_category(session, name: str, description) -> Category:
    result = await session.execute(
        select(Category).where(func.lower(Category.name) == name.strip().lower())
    )
    category = result.scalar_one_or_none()
    if category:
        return category

    category = Category(name=name.strip(), description=description)
    session.add(category)
    await session.flush()
    return category


async def get_or_create_product(session, name: str, category: Category, price: Decimal,
                                stock: int, threshold: int, user: User) -> Product:
    result = await session.execute(select(Product).where(Product.name == name))
    product = result.scalar_one_or_none()
    if product:
        return product

    product = Product(
        name=name,
        category_id=category.id,
        price=price,
        current_stock=stock,
        min_stock_threshold=threshold,
        created_by=user.id,
        updated_by=user.id,
    )
    session.add(product)
    await session.flush()
    return product


async def main():
    await create_db_and_tables()
    async with async_session_maker() as session:
        user = await get_or_create_user(session, DEMO_EMAIL, DEMO_PASSWORD)

        categories = {}
        for name, description in CATEGORIES.items():
            categories[name] = await get_or_create_category(session, name, description)

        for name, category_name, price, stock, threshold in PRODUCTS:
            await get_or_create_product(session, name, categories[category_name], price, stock, threshold, user)

        await session.commit()

    print(f"Seeded {len(CATEGORIES)} categories and {len(PRODUCTS)} products (login: {DEMO_EMAIL} / {DEMO_PASSWORD})")


if __name__ == "__main__":
    asyncio.run(main())
