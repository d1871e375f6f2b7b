"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample users (3 drivers, 5 passengers)
  - 5 sample rides (mix of SCHEDULED, IN_PROGRESS, COMPLETED)
  - a handful of bookings, with seat counters kept consistent
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from carpool.domain.enums import BookingStatus, RideStatus
from carpool.domain.pricing import booking_total, to_money
from carpool.infrastructure.database import async_session_factory, engine
from carpool.infrastructure.models import BookingModel, RideModel, UserModel


USERS = [
    {"first_name": "Aarav", "last_name": "Sharma", "email": "aarav@example.com",
     "is_driver": True, "rating": 4.8, "car_model": "Honda City", "car_plate": "MH01AB1234"},
    {"first_name": "Priya", "last_name": "Patel", "email": "priya@example.com",
     "is_driver": True, "rating": 4.9, "car_model": "Toyota Innova", "car_plate": "MH02CD5678"},
    {"first_name": "Rohan", "last_name": "Mehta", "email": "rohan@example.com",
     "is_driver": True, "rating": 4.5, "car_model": "Maruti Dzire", "car_plate": "MH04EF9012"},
    {"first_name": "Sneha", "last_name": "Gupta", "email": "sneha@example.com", "rating": 4.7},
    {"first_name": "Vikram", "last_name": "Singh", "email": "vikram@example.com", "rating": 4.6},
    {"first_name": "Ananya", "last_name": "Reddy", "email": "ananya@example.com", "rating": 4.9},
    {"first_name": "Karan", "last_name": "Joshi", "email": "karan@example.com", "rating": 4.3},
    {"first_name": "Meera", "last_name": "Nair", "email": "meera@example.com", "rating": 4.8},
]

# (lat, lng, address)
ANDHERI = (19.1136, 72.8697, "Andheri West, Mumbai")
POWAI = (19.1176, 72.9060, "Powai, Mumbai")
BANDRA = (19.0596, 72.8295, "Bandra, Mumbai")
PUNE = (18.5204, 73.8567, "Shivajinagar, Pune")
THANE = (19.2183, 72.9781, "Thane West")


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        users = [UserModel(**u) for u in USERS]
        session.add_all(users)
        await session.flush()
        drivers, passengers = users[:3], users[3:]
        print(f"  Created {len(users)} users")

        # ── Rides ─────────────────────────────────────────────────────
        now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
        rides_data = [
            {"driver": drivers[0], "from": ANDHERI, "to": PUNE,
             "departure": now + timedelta(days=1, hours=7), "seats": 3,
             "price": "450.00", "status": RideStatus.SCHEDULED},
            {"driver": drivers[1], "from": POWAI, "to": PUNE,
             "departure": now + timedelta(days=1, hours=9), "seats": 6,
             "price": "400.00", "status": RideStatus.SCHEDULED},
            {"driver": drivers[2], "from": BANDRA, "to": THANE,
             "departure": now + timedelta(days=2, hours=8), "seats": 4,
             "price": "150.00", "status": RideStatus.SCHEDULED},
            {"driver": drivers[0], "from": THANE, "to": ANDHERI,
             "departure": now - timedelta(minutes=30), "seats": 3,
             "price": "120.00", "status": RideStatus.IN_PROGRESS},
            {"driver": drivers[1], "from": PUNE, "to": POWAI,
             "departure": now - timedelta(days=3), "seats": 6,
             "price": "400.00", "status": RideStatus.COMPLETED},
        ]

        rides = []
        for r in rides_data:
            ride = RideModel(
                driver_id=r["driver"].id,
                origin_lat=r["from"][0],
                origin_lng=r["from"][1],
                origin_address=r["from"][2],
                destination_lat=r["to"][0],
                destination_lng=r["to"][1],
                destination_address=r["to"][2],
                departure_time=r["departure"],
                total_seats=r["seats"],
                available_seats=r["seats"],
                price_per_seat=to_money(r["price"]),
                status=r["status"],
            )
            session.add(ride)
            rides.append(ride)
        await session.flush()
        print(f"  Created {len(rides)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        bookings_data = [
            (rides[0], passengers[0], 1, BookingStatus.CONFIRMED),
            (rides[0], passengers[1], 1, BookingStatus.PENDING),
            (rides[1], passengers[2], 2, BookingStatus.PENDING),
            (rides[3], passengers[3], 1, BookingStatus.CONFIRMED),
            (rides[4], passengers[4], 2, BookingStatus.COMPLETED),
        ]
        for ride, passenger, seats, status in bookings_data:
            session.add(
                BookingModel(
                    ride_id=ride.id,
                    passenger_id=passenger.id,
                    seats_booked=seats,
                    total_price=booking_total(seats, ride.price_per_seat),
                    status=status,
                )
            )
            # Completed bookings have already given their seats back
            if status != BookingStatus.COMPLETED:
                ride.available_seats -= seats
        await session.flush()
        print(f"  Created {len(bookings_data)} bookings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
