"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - one active pricing config per vehicle class
  - 12 sample drivers (spread around central Doha), mostly online and approved
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import func, select

from src.domain.entities import GeoPoint, PricingConfig
from src.domain.enums import ApprovalStatus, VehicleClass
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import PricingConfigModel
from src.infrastructure.repositories import DriverRepository, PricingConfigRepository

# Doha Corniche (approx)
CENTER_LAT, CENTER_LNG = 25.2948, 51.5310


PRICING = [
    PricingConfig(VehicleClass.SMALL_CAR, base_price=50, per_km_rate=5, minimum_fare=60,
                  service_fee_percentage=10, driver_commission_percentage=20),
    PricingConfig(VehicleClass.SEDAN, base_price=60, per_km_rate=6, minimum_fare=75,
                  service_fee_percentage=10, driver_commission_percentage=20),
    PricingConfig(VehicleClass.SUV, base_price=80, per_km_rate=7, minimum_fare=100,
                  service_fee_percentage=10, driver_commission_percentage=20),
    PricingConfig(VehicleClass.TRUCK, base_price=150, per_km_rate=10, minimum_fare=200,
                  service_fee_percentage=12, driver_commission_percentage=18),
    PricingConfig(VehicleClass.HEAVY_VEHICLE, base_price=300, per_km_rate=15, minimum_fare=400,
                  service_fee_percentage=12, driver_commission_percentage=15),
]

DRIVERS = [
    {"name": "Omar Al-Kuwari", "vehicle_class": VehicleClass.SEDAN, "lat": 25.2960, "lng": 51.5320},
    {"name": "Rashid Nasser", "vehicle_class": VehicleClass.SEDAN, "lat": 25.2850, "lng": 51.5200},
    {"name": "Samir Haddad", "vehicle_class": VehicleClass.SEDAN, "lat": 25.3100, "lng": 51.5000},
    {"name": "Imran Qureshi", "vehicle_class": VehicleClass.SMALL_CAR, "lat": 25.2900, "lng": 51.5400},
    {"name": "Tariq Mansour", "vehicle_class": VehicleClass.SMALL_CAR, "lat": 25.2700, "lng": 51.5350},
    {"name": "Yousef Saleh", "vehicle_class": VehicleClass.SUV, "lat": 25.3000, "lng": 51.5250},
    {"name": "Bilal Ahmed", "vehicle_class": VehicleClass.SUV, "lat": 25.3200, "lng": 51.4900},
    {"name": "Khalid Ibrahim", "vehicle_class": VehicleClass.TRUCK, "lat": 25.2600, "lng": 51.5500},
    {"name": "Faisal Hamad", "vehicle_class": VehicleClass.TRUCK, "lat": 25.2500, "lng": 51.5600},
    {"name": "Nabil Youssef", "vehicle_class": VehicleClass.HEAVY_VEHICLE, "lat": 25.2400, "lng": 51.5700},
    # Offline and unapproved drivers are never offered bookings
    {"name": "Hassan Ali", "vehicle_class": VehicleClass.SEDAN, "lat": 25.2950, "lng": 51.5315,
     "is_online": False},
    {"name": "Adel Karim", "vehicle_class": VehicleClass.SEDAN, "lat": 25.2955, "lng": 51.5318,
     "approval_status": ApprovalStatus.PENDING},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(PricingConfigModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Pricing ───────────────────────────────────────────────────
        pricing_repo = PricingConfigRepository(session)
        for config in PRICING:
            await pricing_repo.upsert(config)
        print(f"  Created {len(PRICING)} pricing configs")

        # ── Drivers ───────────────────────────────────────────────────
        driver_repo = DriverRepository(session)
        now = datetime.now(timezone.utc)
        for d in DRIVERS:
            await driver_repo.create(
                name=d["name"],
                vehicle_class=d["vehicle_class"],
                approval_status=d.get("approval_status", ApprovalStatus.APPROVED),
                is_online=d.get("is_online", True),
                location=GeoPoint(d["lat"], d["lng"]),
                now=now,
            )
        print(f"  Created {len(DRIVERS)} drivers")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
