from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from tortoise import Tortoise

from app.core.db import MODELS_MODULES
from app.core.locks import tool_locks
from app.services.inventory_service import create_tool

# Fixed clock for tests that involve hold windows
NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)

JUN_1 = date(2026, 6, 1)
JUN_3 = date(2026, 6, 3)
JUN_4 = date(2026, 6, 4)
JUN_5 = date(2026, 6, 5)
JUN_6 = date(2026, 6, 6)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database per test."""
    # Locks are bound to the event loop they were first contended on
    tool_locks.clear()
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def make_tool(db):
    """Factory for tools with sensible defaults."""
    async def _make(total_stock=2, price=Decimal("1000"), name="Rotary Hammer", **kwargs):
        kwargs.setdefault("category", "Power tools")
        kwargs.setdefault("subcategory", "Rotary hammers")
        return await create_tool(name=name, price=price, total_stock=total_stock, **kwargs)
    return _make
