import asyncio
import sys

from sqlalchemy.future import select

from app.db.session import engine, AsyncSessionLocal
from app.models.base import Base
from app.models.pricing_config import PricingConfig
from app.models.pricing_config_history import PricingConfigHistory  # noqa: F401  (registers the table)
from app.schemas.pricing_config import DEFAULT_PRICING_VALUES
from app.services.pricing_config import create_config


async def seed_pricing_config(created_by: str) -> bool:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        res = await db.execute(select(PricingConfig).where(PricingConfig.is_active.is_(True)))
        active = res.scalars().first()
        if active:
            print(f"Active pricing configuration already exists (id={active.id}, v{active.version})")
            return False

        fields = dict(DEFAULT_PRICING_VALUES)
        fields["notes"] = "Seeded default configuration"
        config = await create_config(db, fields, created_by=created_by, set_as_active=True)

        print("Pricing configuration seeded")
        print(f"Config ID: {config.id}")
        print(f"Min quote: {config.min_quote}")
        print(f"Fuel price: {config.current_fuel_price}")
        return True


async def _run(created_by: str) -> bool:
    try:
        return await seed_pricing_config(created_by)
    finally:
        await engine.dispose()


def main():
    created_by = sys.argv[1] if len(sys.argv) > 1 else "seed"

    try:
        asyncio.run(_run(created_by))
    except Exception as e:
        print(f"Error seeding pricing configuration: {e}")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
