"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 5 sample requesters with funded wallets
  - 10 sample drivers around Hyderabad (mix of skills, one blocked,
    one unapproved, one with an expired subscription)
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from drivehire.config import settings
from drivehire.domain.entities import utcnow
from drivehire.domain.matching import location_cell
from drivehire.infrastructure.database import async_session_factory, engine
from drivehire.infrastructure.models import DriverModel, RequesterModel

# Hyderabad city centre (approx)
CENTRE_LAT, CENTRE_LNG = 17.4000, 78.4800


REQUESTERS = [
    {"name": "Aarav Sharma", "wallet_balance": 5000},
    {"name": "Priya Patel", "wallet_balance": 12000},
    {"name": "Rohan Mehta", "wallet_balance": 800},
    {"name": "Sneha Gupta", "wallet_balance": 25000},
    {"name": "Vikram Singh", "wallet_balance": 0},
]

DRIVERS = [
    {"name": "Ravi Kumar", "skills": ["CAR", "SUV"], "lat": 17.4020, "lng": 78.4810},
    {"name": "Suresh Rao", "skills": ["CAR"], "lat": 17.4100, "lng": 78.4900},
    {"name": "Imran Khan", "skills": ["SUV", "LUXURY"], "lat": 17.3950, "lng": 78.4750},
    {"name": "Anil Verma", "skills": ["MINI_TRUCK"], "lat": 17.4300, "lng": 78.5000},
    {"name": "Deepak Yadav", "skills": ["HEAVY_VEHICLE", "MINI_TRUCK"], "lat": 17.3800, "lng": 78.4600},
    {"name": "Manoj Reddy", "skills": ["CAR", "LUXURY"], "lat": 17.4600, "lng": 78.5200},
    {"name": "Kiran Naidu", "skills": ["CAR", "SUV"], "lat": 17.4050, "lng": 78.4850},
    # Not dispatchable
    {"name": "Blocked Driver", "skills": ["CAR"], "lat": 17.4010, "lng": 78.4805, "blocked": True},
    {"name": "Pending Approval", "skills": ["CAR"], "lat": 17.4015, "lng": 78.4808, "approved": False},
    {"name": "Lapsed Subscription", "skills": ["CAR"], "lat": 17.4005, "lng": 78.4802, "expired": True},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM requesters"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Requesters ────────────────────────────────────────────────
        for r in REQUESTERS:
            session.add(
                RequesterModel(name=r["name"], wallet_balance=r["wallet_balance"])
            )
        await session.flush()
        print(f"  Created {len(REQUESTERS)} requesters")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            expires = now + timedelta(days=30)
            if d.get("expired"):
                expires = now - timedelta(days=1)
            session.add(
                DriverModel(
                    name=d["name"],
                    is_approved=d.get("approved", True),
                    is_blocked=d.get("blocked", False),
                    is_online=True,
                    vehicle_skills=d["skills"],
                    home_lat=d["lat"] + 0.02,
                    home_lng=d["lng"] + 0.02,
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                    location_updated_at=now,
                    h3_cell=location_cell(d["lat"], d["lng"], settings.h3_resolution),
                    subscription_expires_at=expires,
                    rides_assigned=0,
                    ride_limit=30,
                    speed_violation_count=0,
                    total_rides_completed=0,
                    total_earnings=0,
                    wallet_balance=0,
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
