#!/usr/bin/env python3
"""
Script to create demo usage records, one per plan, plus the default model registry
Run with: python create_test_data.py
"""

import asyncio

from promptops.core import database
from promptops.services.entitlement_service import EntitlementService
from promptops.services.plan_catalog import Plan

DEMO_USERS = {
    Plan.FREE: "00000000-0000-0000-0000-00000000f001",
    Plan.PRO: "00000000-0000-0000-0000-00000000f002",
    Plan.TEAM: "00000000-0000-0000-0000-00000000f003",
    Plan.ENTERPRISE: "00000000-0000-0000-0000-00000000f004",
}


async def create_test_data():
    print("🧪 Creating PromptOps test data...")
    print("=" * 60)

    if not database.AsyncSessionLocal:
        print("❌ Database not configured!")
        print("   Make sure your .env file has DATABASE_URL")
        return

    service = EntitlementService()

    try:
        await database.init_db()

        async with database.AsyncSessionLocal() as db:
            inserted = await service.registry.seed_defaults(db)
            print(f"\n✅ Model registry: {inserted} models inserted")

            print("\n📝 Provisioning demo users...")
            for plan, user_id in DEMO_USERS.items():
                record = await service.provision_user(db, user_id, plan=plan)
                print(f"   - {plan.value:<10} {record.supabase_user_id} (period ends {record.period_end:%Y-%m-%d})")

        print("\n" + "=" * 60)
        print("✅ Test data ready!")
        print("\n💡 Sign a JWT with one of the user ids above as `sub` to call the API as that user")

    except Exception as e:
        print(f"\n❌ Error: {str(e)}")
    finally:
        await database.engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_test_data())
