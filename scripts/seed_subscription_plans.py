"""
Seed script to populate the predefined subscription plans.

Run this script after database initialization to create (or bring up to date)
the Basic, Standard and Premium system plans. Re-running it is safe: existing
system plans are matched by tier and their modules/features are synced with the
current definitions.

Usage:
    uv run python -m scripts.seed_subscription_plans
"""
import asyncio
from copy import deepcopy
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.subscriptions.models import SubscriptionPlan
from app.features.subscriptions.plans import DEFAULT_PLANS
from app.utils import get_logger


log = get_logger(__name__)

SYNCED_FIELDS = ("enabled_modules", "module_features", "max_employees", "description")


async def seed_subscription_plans(db: AsyncSession) -> dict[str, SubscriptionPlan]:
    """
    Create missing system plans and sync existing ones.

    Returns:
        Dictionary mapping plan names to SubscriptionPlan objects
    """
    log.info("Seeding subscription plans...")
    plans_map = {}

    for definition in deepcopy(DEFAULT_PLANS):
        stmt = select(SubscriptionPlan).where(
            SubscriptionPlan.tier == definition["tier"],
            SubscriptionPlan.is_system_plan == True,  # noqa: E712
        )
        result = await db.execute(stmt)
        existing = result.scalars().first()

        if existing:
            changed = [f for f in SYNCED_FIELDS if getattr(existing, f) != definition[f]]
            for field in changed:
                setattr(existing, field, definition[field])
            if changed:
                log.info(f"Updated plan '{existing.name}': {', '.join(changed)}")
            else:
                log.debug(f"Plan '{existing.name}' is up to date, skipping")
            plans_map[existing.name] = existing
            continue

        plan = SubscriptionPlan(**definition)
        db.add(plan)
        plans_map[plan.name] = plan
        log.info(f"Created plan: {plan.name}")

    await db.commit()
    log.info(f"Seeded {len(plans_map)} subscription plans")
    return plans_map


async def main():
    """Main function to seed subscription plans."""
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            plans_map = await seed_subscription_plans(db)
            for name, plan in plans_map.items():
                log.info(f"  - {name}: {len(plan.enabled_modules)} modules, up to {plan.max_employees} employees")
        except Exception as e:
            log.error(f"Error seeding subscription plans: {e}", exc_info=True)
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
