import os
from pathlib import Path
from types import SimpleNamespace

import pytest

os.environ.setdefault("LOG_LEVEL", "WARNING")

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from db.database import Base, Product, Warehouse  # noqa: E402
from scripts.seed_reference_data import seed_reasons  # noqa: E402
from services.movements import submit_movement  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))
        if f"{os.sep}unit{os.sep}" in test_path:
            item.add_marker(pytest.mark.unit)
        elif f"{os.sep}integration{os.sep}" in test_path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'stockledger.db'}"


@pytest.fixture()
async def engine(db_url):
    # NullPool: every session gets its own connection, like separate requests.
    engine = create_async_engine(db_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture()
async def refs(db):
    """Movement reasons, two warehouses and three products."""
    await seed_reasons(db)
    wh1 = Warehouse(code="WH1", name="Main warehouse")
    wh2 = Warehouse(code="WH2", name="Store floor")
    p = Product(sku="P-001", name="Widget", unit="pz", min_stock=5)
    p1 = Product(sku="P-101", name="Bolt", unit="pz", min_stock=10)
    p2 = Product(sku="P-102", name="Nut", unit="pz", min_stock=0)
    db.add_all([wh1, wh2, p, p1, p2])
    await db.commit()
    # Plain values: a rollback inside `atomic()` expires every instance in the session.
    return SimpleNamespace(
        wh1=SimpleNamespace(id=wh1.id, code=wh1.code),
        wh2=SimpleNamespace(id=wh2.id, code=wh2.code),
        p=SimpleNamespace(id=p.id, sku=p.sku, min_stock=p.min_stock),
        p1=SimpleNamespace(id=p1.id, sku=p1.sku, min_stock=p1.min_stock),
        p2=SimpleNamespace(id=p2.id, sku=p2.sku, min_stock=p2.min_stock),
    )


@pytest.fixture()
def stock_in(db):
    """Put stock on hand with a plain IN movement."""

    async def _stock_in(product, warehouse, quantity, reason_code="PURCHASE"):
        return await submit_movement(
            db,
            product_id=product.id,
            warehouse_id=warehouse.id,
            movement_type="IN",
            quantity=quantity,
            reason_code=reason_code,
        )

    return _stock_in
