# scripts/seed_data.py
import asyncio
import logging
from decimal import Decimal

from app.core.db import init_db, close_db
from app.models.tool import Tool
from app.services.inventory_service import create_tool

log = logging.getLogger(__name__)

CATALOG = [
    {"name": "Bosch GBH 2-28 Rotary Hammer", "brand": "Bosch", "category": "Power tools", "subcategory": "Rotary hammers", "price": Decimal("800"), "total_stock": 4},
    {"name": "Makita DHP482 Drill Driver", "brand": "Makita", "category": "Power tools", "subcategory": "Drills", "price": Decimal("450"), "total_stock": 6},
    {"name": "Karcher HD 5/15 Pressure Washer", "brand": "Karcher", "category": "Cleaning", "subcategory": "Pressure washers", "price": Decimal("1200"), "total_stock": 2},
    {"name": "Huter DY6500L Generator", "brand": "Huter", "category": "Generators", "subcategory": "Petrol", "price": Decimal("1500"), "total_stock": 2},
]


async def seed():
    # Idempotent: tools that already exist by name are left alone
    for entry in CATALOG:
        if await Tool.filter(name=entry["name"]).exists():
            log.info(f"Tool already present: {entry['name']}")
            continue
        tool = await create_tool(**entry)
        log.info(f"Tool: {tool.name} -> {tool.id}")


async def main():
    await init_db()
    try:
        await seed()
    finally:
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
