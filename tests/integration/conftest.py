import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from db.database import Base, MovementReason, get_async_session
from main import app
from scripts.seed_reference_data import SEED_REASONS


@pytest.fixture()
def client(tmp_path):
    path = tmp_path / "api.db"

    # Schema and reasons through a plain sync engine; the app gets its own async engine.
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as s:
        s.add_all(
            MovementReason(code=r.code, description=r.description, applies_to=",".join(r.applies_to))
            for r in SEED_REASONS
        )
        s.commit()
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    # No context manager: the lifespan would connect to the configured DATABASE_URL.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def catalog(client):
    """Two warehouses and three products created through the API."""

    def _post(path, payload):
        resp = client.post(path, json=payload)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return {
        "wh1": _post("/catalog/warehouses", {"code": "WH1", "name": "Main warehouse"}),
        "wh2": _post("/catalog/warehouses", {"code": "WH2", "name": "Store floor"}),
        "p": _post("/catalog/products", {"sku": "P-001", "name": "Widget", "min_stock": 5}),
        "p1": _post("/catalog/products", {"sku": "P-101", "name": "Bolt", "min_stock": 10}),
        "p2": _post("/catalog/products", {"sku": "P-102", "name": "Nut"}),
    }


@pytest.fixture()
def move(client):
    def _move(product, warehouse, movement_type, quantity, reason_code, **extra):
        payload = {
            "product_id": product["id"],
            "warehouse_id": warehouse["id"],
            "movement_type": movement_type,
            "quantity": quantity,
            "reason_code": reason_code,
        }
        payload.update(extra)
        return client.post("/inventory/movements", json=payload)

    return _move
