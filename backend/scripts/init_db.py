#!/usr/bin/env python3
"""
Database Initialization Script for SPMS

This script:
1. Tests database connectivity
2. Creates any missing tables
3. Seeds the current academic year setting if needed

Usage:
    python scripts/init_db.py              # Connect + create tables
    python scripts/init_db.py --check      # Only check connectivity
    python scripts/init_db.py --seed       # Also store the academic year setting
    python scripts/init_db.py --status     # Show table status
"""

import asyncio
import sys
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def test_connection() -> bool:
    """Test database connectivity"""
    print("\n[InitDB] Testing database connection...")

    try:
        from sqlalchemy import text
        from spms.core.database import get_engine, get_database_url

        db_url = get_database_url()
        print(f"[InitDB] Connecting to: {db_url.split('@')[1] if '@' in db_url else 'database'}")

        async with get_engine().connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

        print("[InitDB] Database connection successful!")
        return True

    except Exception as e:
        print(f"[InitDB] ERROR: Database connection failed: {e}")
        return False


async def create_tables() -> bool:
    """Create database tables using SQLAlchemy"""
    print("\n[InitDB] Creating/verifying database tables...")

    try:
        from spms.core.database import init_db

        await init_db()

        print("[InitDB] Database tables created/verified!")
        return True

    except Exception as e:
        print(f"[InitDB] ERROR: Table creation failed: {e}")
        import traceback
        traceback.print_exc()
        return False


async def seed_data(academic_year: str = None) -> bool:
    """Store the academic year setting the track registry listings default to"""
    print("\n[InitDB] Seeding initial data...")

    try:
        from sqlalchemy import select
        from spms.core.database import AsyncSessionLocal
        from spms.models.system_setting import SystemSetting
        from spms.services.academic_year import ACADEMIC_YEAR_SETTING_KEY, default_academic_year

        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(SystemSetting).where(SystemSetting.key == ACADEMIC_YEAR_SETTING_KEY)
            )
            existing = result.scalar_one_or_none()

            if not existing:
                value = academic_year or default_academic_year()
                session.add(SystemSetting(
                    key=ACADEMIC_YEAR_SETTING_KEY,
                    value=value,
                    description="Academic year used for track selections",
                    category="academic",
                ))
                await session.commit()
                print(f"[InitDB] Academic year set to {value}")
            else:
                print(f"[InitDB] Academic year already set ({existing.value})")

        print("[InitDB] Seed data completed!")
        return True

    except Exception as e:
        print(f"[InitDB] WARNING: Seed data failed: {e}")
        # Don't fail on seed errors
        return True


async def show_table_status():
    """Show current table status"""
    print("\n[InitDB] Database Table Status:")
    print("-" * 50)

    try:
        from sqlalchemy import inspect
        from spms.core.database import get_engine

        def describe(sync_conn):
            inspector = inspect(sync_conn)
            return {table: len(inspector.get_columns(table)) for table in inspector.get_table_names()}

        async with get_engine().connect() as conn:
            tables = await conn.run_sync(describe)

        print(f"Total tables: {len(tables)}")
        print("\nTables:")
        for table in sorted(tables):
            print(f"  - {table} ({tables[table]} columns)")

    except Exception as e:
        print(f"[InitDB] Could not inspect tables: {e}")


async def main():
    """Main initialization function"""
    parser = argparse.ArgumentParser(description="SPMS Database Initialization")
    parser.add_argument("--check", action="store_true", help="Only check connectivity")
    parser.add_argument("--seed", action="store_true", help="Include seed data")
    parser.add_argument("--academic-year", default=None, help="Academic year to seed, e.g. 2025-26")
    parser.add_argument("--status", action="store_true", help="Show table status")

    args = parser.parse_args()

    from spms.core.database import close_db

    print("=" * 50)
    print("  SPMS - Database Initialization")
    print("=" * 50)

    try:
        # Always test connection first
        if not await test_connection():
            print("\n[InitDB] FAILED: Cannot connect to database")
            return 1

        if args.check:
            print("\n[InitDB] Connection check completed!")
            return 0

        if args.status:
            await show_table_status()
            return 0

        if not await create_tables():
            print("[InitDB] FAILED: Could not create tables")
            return 1

        if args.seed:
            await seed_data(args.academic_year)

        await show_table_status()
    finally:
        await close_db()

    print("\n" + "=" * 50)
    print("  Database Initialization Complete!")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
