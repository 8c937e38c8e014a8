"""
Database seeding script for a demo trip.

Creates one in-transit New York -> Boston trip with two booked loads so the
tracking endpoints have something to work against in development.
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from backend.app.core.timeutils import utcnow
from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.trip import Trip
from backend.app.models.load import Load
from backend.app.models.trip_enums import TripStatus, LoadStatus
# Registered so create_all builds every tracking table
from backend.app.models import location_sample, tracking_status, tracking_event, delay_alert, notification  # noqa: F401

DEMO_REFERENCE = "DEMO-NYC-BOS"


async def seed_demo_trip():
    """
    Seed the demo trip.

    Creates:
    - 1 IN_TRANSIT trip (NYC -> Boston, due in 5 hours)
    - 2 loads for shippers 101 and 102
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo trip seeding...")

        result = await db.execute(select(Trip).where(Trip.reference == DEMO_REFERENCE))
        existing = result.scalar_one_or_none()
        if existing:
            print(f"ℹ️  Demo trip already exists (id={existing.id}), skipping seeding")
            return

        now = utcnow()
        trip = Trip(
            reference=DEMO_REFERENCE,
            carrier_id=1,
            origin_lat=40.7128,
            origin_lng=-74.0060,
            destination_lat=42.3601,
            destination_lng=-71.0589,
            departure_date=now,
            estimated_arrival=now + timedelta(hours=5),
            status=TripStatus.IN_TRANSIT,
        )
        db.add(trip)
        await db.flush()

        for shipper_id in (101, 102):
            db.add(Load(
                trip_id=trip.id,
                shipper_id=shipper_id,
                booking_reference=f"{DEMO_REFERENCE}-{shipper_id}",
                status=LoadStatus.IN_TRANSIT,
            ))

        await db.commit()

        print("\n✅ Demo trip seeded successfully!")
        print("\n📋 Created:")
        print(f"   trip_id={trip.id} reference={DEMO_REFERENCE} status=IN_TRANSIT")
        print("   2 loads (shippers 101, 102)")


if __name__ == "__main__":
    asyncio.run(seed_demo_trip())
