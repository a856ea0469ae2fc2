"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 riders and 4 drivers
  - 4 vehicles (CARs and CNGs) with a live location sample each
  - the default scoring config (version 1, active)
"""

import asyncio

from ridepool.config import settings
from ridepool.domain.enums import Gender, VehicleType
from ridepool.domain.matching import region_cell
from ridepool.infrastructure.database import async_session_factory, engine
from ridepool.infrastructure.models import (
    ScoringConfigModel,
    UserModel,
    VehicleLocationModel,
    VehicleModel,
)

RIDERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "gender": Gender.MALE},
    {"name": "Priya Patel", "email": "priya@example.com", "gender": Gender.FEMALE},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "gender": Gender.MALE},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "gender": Gender.FEMALE},
    {"name": "Vikram Singh", "email": "vikram@example.com", "gender": Gender.MALE},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "gender": Gender.FEMALE},
    {"name": "Karan Joshi", "email": "karan@example.com", "gender": Gender.MALE},
    {"name": "Meera Nair", "email": "meera@example.com", "gender": Gender.FEMALE},
]

# Dhaka, around Gulshan / Banani
DRIVERS = [
    # priority destination: Motijheel
    {"name": "Rahim Uddin", "email": "rahim@example.com", "priority": (23.7330, 90.4172),
     "vehicle_type": VehicleType.CAR, "number": "DHA-GA-1101", "seats": 4,
     "lat": 23.7937, "lng": 90.4066},
    {"name": "Karim Hossain", "email": "karim@example.com", "priority": None,
     "vehicle_type": VehicleType.CAR, "number": "DHA-GA-1102", "seats": 4,
     "lat": 23.7900, "lng": 90.4100},
    {"name": "Salma Akter", "email": "salma@example.com", "priority": None,
     "vehicle_type": VehicleType.CNG, "number": "DHA-TH-2201", "seats": 3,
     "lat": 23.7950, "lng": 90.4030},
    {"name": "Jamal Mia", "email": "jamal@example.com", "priority": (23.8103, 90.4125),
     "vehicle_type": VehicleType.CNG, "number": "DHA-TH-2202", "seats": 3,
     "lat": 23.7880, "lng": 90.4150},
]


async def seed():
    async with async_session_factory() as session:
        # ── Scoring config ────────────────────────────────────────────
        session.add(
            ScoringConfigModel(
                config_name=settings.default_scoring_config, version=1, is_active=True
            )
        )

        # ── Riders ────────────────────────────────────────────────────
        for r in RIDERS:
            session.add(UserModel(name=r["name"], email=r["email"], gender=r["gender"]))
        await session.flush()
        print(f"  Created {len(RIDERS)} riders")

        # ── Drivers, vehicles and live positions ──────────────────────
        for d in DRIVERS:
            priority = d["priority"] or (None, None)
            driver = UserModel(
                name=d["name"],
                email=d["email"],
                is_driver=True,
                priority_destination_lat=priority[0],
                priority_destination_lng=priority[1],
            )
            session.add(driver)
            await session.flush()

            vehicle = VehicleModel(
                driver_id=driver.id,
                vehicle_type=d["vehicle_type"],
                vehicle_number=d["number"],
                max_passengers=d["seats"],
            )
            session.add(vehicle)
            await session.flush()

            session.add(
                VehicleLocationModel(
                    vehicle_id=vehicle.id,
                    driver_id=driver.id,
                    lat=d["lat"],
                    lng=d["lng"],
                    cell=region_cell(d["lat"], d["lng"], settings.h3_resolution),
                    is_active=True,
                    is_available=True,
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers with vehicles")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
