import pytest
from decimal import Decimal
from uuid import uuid4

from app.core.errors import CapacityExceeded, InvalidInput, NotFound
from app.models.ledger import MovementKind, StockMovement
from app.models.order import OrderStatus
from app.models.outbox import OutboxEvent
from app.models.tool import Tool, ToolStatus
from app.services.booking_service import reserve
from app.services.inventory_service import (
    create_tool,
    get_tool,
    list_categories,
    list_tools,
    list_tools_page,
    low_stock_tools,
    popular_tools,
    retire_tool,
    stock_history,
    update_tool,
)
from app.services.order_service import create_order, update_order_status
from tests.conftest import JUN_1, JUN_3, JUN_5, JUN_6, NOW


async def _ledger_totals(tool_id):
    movements = await StockMovement.filter(tool_id=tool_id)
    return (
        sum(m.in_stock_delta for m in movements),
        sum(m.total_stock_delta for m in movements),
    )


class TestCreateTool:
    @pytest.mark.asyncio
    async def test_initial_movement(self, db):
        tool = await create_tool(name="Plate compactor", category="Construction", price=Decimal("2500"), total_stock=4)
        assert tool.in_stock == 4
        assert tool.status == ToolStatus.AVAILABLE

        history = await stock_history(tool.id)
        assert len(history) == 1
        assert history[0].kind == MovementKind.INITIAL
        assert history[0].in_stock_after == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"price": Decimal("0"), "total_stock": 1},
        {"price": Decimal("-5"), "total_stock": 1},
        {"price": Decimal("10"), "total_stock": -1},
        {"price": Decimal("10"), "total_stock": 2, "in_stock": 3},
    ])
    async def test_invalid_tool(self, db, kwargs):
        with pytest.raises(InvalidInput):
            await create_tool(name="Bad", category="Misc", **kwargs)

    @pytest.mark.asyncio
    async def test_tool_without_units_is_not_rented(self, db):
        tool = await create_tool(name="Core drill", category="Construction", price=Decimal("3000"), total_stock=0)
        assert tool.in_stock == 0
        assert tool.status == ToolStatus.AVAILABLE
        assert (await get_tool(tool.id)).status == ToolStatus.AVAILABLE


class TestCorrections:
    @pytest.mark.asyncio
    async def test_total_change_moves_shelf_count(self, make_tool):
        tool = await make_tool(total_stock=2)
        updated = await update_tool(tool.id, total_stock=5, now=NOW)
        assert updated.total_stock == 5
        assert updated.in_stock == 5

        history = await stock_history(tool.id)
        assert history[-1].kind == MovementKind.CORRECTION
        assert history[-1].total_stock_delta == 3
        assert await _ledger_totals(tool.id) == (5, 5)

    @pytest.mark.asyncio
    async def test_reduction_below_committed_peak_rejected(self, make_tool):
        tool = await make_tool(total_stock=3)
        await reserve(tool.id, JUN_1, JUN_5, 2, now=NOW)
        await reserve(tool.id, JUN_3, JUN_6, 1, now=NOW)

        with pytest.raises(InvalidInput):
            await update_tool(tool.id, total_stock=2, now=NOW)

        unchanged = await get_tool(tool.id)
        assert unchanged.total_stock == 3
        assert await StockMovement.filter(tool_id=tool.id).count() == 1

    @pytest.mark.asyncio
    async def test_reduction_down_to_peak_allowed(self, make_tool):
        tool = await make_tool(total_stock=4)
        await reserve(tool.id, JUN_1, JUN_5, 2, now=NOW)
        await reserve(tool.id, JUN_5, JUN_6, 2, now=NOW)
        updated = await update_tool(tool.id, total_stock=2, now=NOW)
        assert updated.total_stock == 2

        with pytest.raises(CapacityExceeded):
            await reserve(tool.id, JUN_3, JUN_5, 1, now=NOW)

    @pytest.mark.asyncio
    async def test_shelf_count_cannot_cover_rented_units(self, make_tool):
        tool = await make_tool(total_stock=3)
        order = await create_order(
            items=[{"tool_id": tool.id, "quantity": 2}], start_date=JUN_1, end_date=JUN_5, now=NOW
        )
        await update_order_status(order.id, OrderStatus.CONFIRMED, now=NOW)
        await update_order_status(order.id, OrderStatus.ACTIVE, now=NOW)

        with pytest.raises(InvalidInput):
            await update_tool(tool.id, in_stock=2, now=NOW)
        updated = await update_tool(tool.id, in_stock=0, now=NOW)
        assert updated.in_stock == 0
        assert updated.status == ToolStatus.RENTED
        assert await _ledger_totals(tool.id) == (0, 3)

    @pytest.mark.asyncio
    async def test_emptied_shelf_with_nothing_out_stays_available(self, make_tool):
        tool = await make_tool(total_stock=2)
        updated = await update_tool(tool.id, in_stock=0, now=NOW)
        assert updated.in_stock == 0
        assert updated.status == ToolStatus.AVAILABLE

        restocked = await update_tool(tool.id, in_stock=2, now=NOW)
        assert restocked.status == ToolStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_metadata_update(self, make_tool):
        tool = await make_tool()
        updated = await update_tool(tool.id, price=Decimal("1200"), brand="Makita", description="SDS-plus")
        assert updated.price == Decimal("1200")
        assert updated.brand == "Makita"
        assert await StockMovement.filter(tool_id=tool.id).count() == 1

        with pytest.raises(InvalidInput):
            await update_tool(tool.id, price=Decimal("0"))

    @pytest.mark.asyncio
    async def test_unknown_tool(self, db):
        with pytest.raises(NotFound):
            await update_tool(uuid4(), total_stock=3)


class TestRetire:
    @pytest.mark.asyncio
    async def test_retire_with_bookings_rejected(self, make_tool):
        tool = await make_tool()
        await reserve(tool.id, JUN_1, JUN_5, 1, now=NOW)
        with pytest.raises(InvalidInput):
            await retire_tool(tool.id, now=NOW)
        assert (await get_tool(tool.id)).is_bookable

    @pytest.mark.asyncio
    async def test_retire_idle_tool(self, make_tool):
        tool = await make_tool()
        retired = await retire_tool(tool.id, now=NOW)
        assert retired.status == ToolStatus.RETIRED
        assert not retired.is_active
        assert not retired.is_bookable
        assert await list_tools() == []
        assert [t.id for t in await list_tools(include_inactive=True)] == [tool.id]


class TestCatalog:
    @pytest.mark.asyncio
    async def test_list_and_search(self, make_tool):
        await make_tool(name="Rotary Hammer", brand="Bosch")
        await make_tool(name="Circular Saw", category="Woodworking", subcategory="Saws")
        await make_tool(name="Tile Cutter", category="Woodworking", subcategory="Cutters", total_stock=0)

        assert len(await list_tools()) == 3
        assert [t.name for t in await list_tools(category="Woodworking")] == ["Circular Saw", "Tile Cutter"]
        assert [t.name for t in await list_tools(search="bosch")] == ["Rotary Hammer"]
        assert [t.name for t in await list_tools(available=False)] == ["Tile Cutter"]

    @pytest.mark.asyncio
    async def test_categories(self, make_tool):
        await make_tool(name="A")
        await make_tool(name="B", category="Woodworking", subcategory="Saws")
        await make_tool(name="C", category="Woodworking", subcategory="Saws")
        await make_tool(name="D", category="Woodworking", subcategory="Routers")

        categories = await list_categories()
        assert categories == [
            {"name": "Power tools", "subcategories": ["Rotary hammers"]},
            {"name": "Woodworking", "subcategories": ["Routers", "Saws"]},
        ]

    @pytest.mark.asyncio
    async def test_low_stock(self, make_tool):
        plenty = await make_tool(name="Plenty", total_stock=10)
        scarce = await make_tool(name="Scarce", total_stock=2)
        assert [t.id for t in await low_stock_tools()] == [scarce.id]

        order = await create_order(
            items=[{"tool_id": plenty.id, "quantity": 8}], start_date=JUN_1, end_date=JUN_5, now=NOW
        )
        await update_order_status(order.id, OrderStatus.CONFIRMED, now=NOW)
        await update_order_status(order.id, OrderStatus.ACTIVE, now=NOW)

        assert {t.id for t in await low_stock_tools()} == {plenty.id, scarce.id}
        alert = await OutboxEvent.get(event_type="inventory.low_stock_alert.v1", aggregate_id=plenty.id)
        assert alert.payload["in_stock"] == 2

    @pytest.mark.asyncio
    async def test_counters_match_ledger(self, make_tool):
        tool = await make_tool(total_stock=4)
        await update_tool(tool.id, total_stock=6, now=NOW)
        await update_tool(tool.id, in_stock=5, now=NOW)
        stored = await Tool.get(id=tool.id)
        assert await _ledger_totals(tool.id) == (stored.in_stock, stored.total_stock)

    @pytest.mark.asyncio
    async def test_brand_and_price_filters(self, make_tool):
        await make_tool(name="Rotary Hammer", brand="Bosch", price=Decimal("950"))
        await make_tool(name="Angle Grinder", brand="Makita", price=Decimal("600"))
        await make_tool(name="Jigsaw", brand="Bosch", price=Decimal("800"))

        assert [t.name for t in await list_tools(brand="Bosch")] == ["Jigsaw", "Rotary Hammer"]
        in_range = await list_tools(min_price=Decimal("700"), max_price=Decimal("960"))
        assert [t.name for t in in_range] == ["Jigsaw", "Rotary Hammer"]
        assert [t.name for t in await list_tools(max_price=Decimal("650"))] == ["Angle Grinder"]

        with pytest.raises(InvalidInput):
            await list_tools(min_price=Decimal("900"), max_price=Decimal("100"))

    @pytest.mark.asyncio
    async def test_sorting(self, make_tool):
        await make_tool(name="Rotary Hammer", price=Decimal("950"))
        await make_tool(name="Angle Grinder", price=Decimal("600"))
        await make_tool(name="Jigsaw", price=Decimal("800"))

        by_price = await list_tools(sort="price")
        assert [t.name for t in by_price] == ["Angle Grinder", "Jigsaw", "Rotary Hammer"]
        by_price_desc = await list_tools(sort="price", order="desc")
        assert [t.name for t in by_price_desc] == ["Rotary Hammer", "Jigsaw", "Angle Grinder"]
        by_name_desc = await list_tools(order="desc")
        assert [t.name for t in by_name_desc] == ["Rotary Hammer", "Jigsaw", "Angle Grinder"]

        with pytest.raises(InvalidInput):
            await list_tools(sort="weight")
        with pytest.raises(InvalidInput):
            await list_tools(order="sideways")

    @pytest.mark.asyncio
    async def test_pages(self, make_tool):
        for name in ["A", "B", "C", "D", "E"]:
            await make_tool(name=name)

        first = await list_tools_page(page=1, limit=2)
        assert [t.name for t in first.items] == ["A", "B"]
        assert first.pagination() == {"current": 1, "total": 3, "count": 2, "total_items": 5}

        last = await list_tools_page(page=3, limit=2)
        assert [t.name for t in last.items] == ["E"]
        assert last.pagination()["count"] == 1

        beyond = await list_tools_page(page=4, limit=2)
        assert beyond.items == []
        assert beyond.total_items == 5

        filtered = await list_tools_page(page=1, limit=10, search="c")
        assert [t.name for t in filtered.items] == ["C"]
        assert filtered.pages == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
    async def test_invalid_page(self, db, page, limit):
        with pytest.raises(InvalidInput):
            await list_tools_page(page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_popular_tools(self, make_tool):
        hammer = await make_tool(name="Rotary Hammer")
        saw = await make_tool(name="Circular Saw")
        grinder = await make_tool(name="Angle Grinder")
        retired = await make_tool(name="Old Drill")
        await Tool.filter(id=saw.id).update(total_rentals=7)
        await Tool.filter(id=hammer.id).update(total_rentals=3)
        await Tool.filter(id=retired.id).update(total_rentals=50)
        await retire_tool(retired.id, now=NOW)

        assert [t.id for t in await popular_tools()] == [saw.id, hammer.id, grinder.id]
        assert [t.id for t in await popular_tools(limit=1)] == [saw.id]
        by_popularity = await list_tools(sort="popularity", order="desc")
        assert [t.id for t in by_popularity] == [saw.id, hammer.id, grinder.id]

        with pytest.raises(InvalidInput):
            await popular_tools(limit=0)

    @pytest.mark.asyncio
    async def test_completed_rentals_feed_popularity(self, make_tool):
        hammer = await make_tool(name="Rotary Hammer")
        saw = await make_tool(name="Circular Saw")
        order = await create_order(
            items=[{"tool_id": saw.id, "quantity": 1}], start_date=JUN_1, end_date=JUN_5, now=NOW
        )
        for step in (OrderStatus.CONFIRMED, OrderStatus.ACTIVE, OrderStatus.COMPLETED):
            await update_order_status(order.id, step, now=NOW)

        popular = await popular_tools()
        assert [t.id for t in popular] == [saw.id, hammer.id]
        assert popular[0].total_rentals == 1


@pytest.mark.asyncio
async def test_seed_is_idempotent(db):
    from app.scripts.seed_data import CATALOG, seed

    await seed()
    await seed()
    assert await Tool.all().count() == len(CATALOG)
    assert await StockMovement.filter(kind=MovementKind.INITIAL).count() == len(CATALOG)
