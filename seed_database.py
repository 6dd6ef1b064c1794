"""
Database Seeding Script for Wanderlust Tours
Creates the tables plus a demo admin, a demo traveler and sample tour packages,
then prints bearer tokens for both accounts.
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select

from app.core.database import async_session, close_db, init_db
from app.core.security import create_access_token
from app.models.tour import TourPackage
from app.models.user import User, UserRole

DEFAULT_CANCELLATION_POLICY = (
    "Full refund more than 30 days before departure, 75% more than 14 days before, "
    "50% more than 7 days before, no refund within 7 days."
)

# destination, country, days, price, discount percent, slots
SAMPLE_TOURS = [
    ("Paris", "France", 5, "850", "0", 20),
    ("Rome", "Italy", 5, "799", "10", 15),
    ("Interlaken", "Switzerland", 7, "1499", "5", 10),
    ("Kyoto", "Japan", 4, "799", "0", 12),
    ("Bali", "Indonesia", 6, "649", "15", 25),
    ("Cape Town", "South Africa", 5, "849", "0", 8),
    ("Jaipur", "India", 3, "359", "0", 30),
    ("Goa", "India", 5, "499", "10", 30),
]


async def get_or_create_user(session, email: str, full_name: str, role: UserRole) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(email=email, full_name=full_name, phone="+10000000000", role=role)
        session.add(user)
        await session.flush()
        print(f"[OK] Created {role.value} {email}")
    return user


async def create_tours(session, admin: User):
    existing = await session.execute(select(TourPackage.id).limit(1))
    if existing.scalar_one_or_none() is not None:
        print("[SKIP] Tour packages already exist")
        return

    for destination, country, days, price, discount, slots in SAMPLE_TOURS:
        session.add(TourPackage(
            title=f"{destination} City Highlights",
            description=f"{days} days exploring {destination}, {country}.",
            destination=destination,
            country=country,
            duration_days=days,
            price=Decimal(price),
            discount=Decimal(discount),
            currency="USD",
            cancellation_policy=DEFAULT_CANCELLATION_POLICY,
            total_booked=0,
            available_slots=slots,
            created_by=admin.id,
        ))
    print(f"[OK] Created {len(SAMPLE_TOURS)} tour packages")


async def main():
    await init_db()

    async with async_session() as session:
        admin = await get_or_create_user(session, "admin@wanderlust-tours.com", "Admin User", UserRole.ADMIN)
        traveler = await get_or_create_user(session, "demo@wanderlust-tours.com", "Demo Traveler", UserRole.USER)
        await create_tours(session, admin)
        await session.commit()

    print()
    print(f"Admin token:    {create_access_token({'sub': str(admin.id)})}")
    print(f"Traveler token: {create_access_token({'sub': str(traveler.id)})}")

    await close_db()


if __name__ == "__main__":
    asyncio.run(main())
