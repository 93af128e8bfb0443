import itertools
import json
import os

os.environ.setdefault("RENTAL_DB", "sqlite+aiosqlite://")
os.environ.pop("RABBIT_URL", None)
os.environ.pop("REDIS_URL", None)

import httpx
import pytest
from sqlalchemy.pool import StaticPool

from rental_service.db import Base, get_engine, get_session
from rental_service.locks import BookingLocks
from rental_service.models import Booking, Car, User


def headers_for(user, *roles):
    return {
        "X-User-Sub": str(user.id),
        "X-User-Roles": json.dumps(list(roles or ("user",))),
    }


@pytest.fixture
async def engine():
    engine = get_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return BookingLocks()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(**kwargs):
        n = next(counter)
        values = {
            "email": f"user{n}@example.com",
            "full_name": f"User {n}",
            "guarantor_code": f"GR{n:04d}",
            "points": 0,
            "total_points_earned": 0,
        }
        values.update(kwargs)
        user = User(**values)
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_car(db):
    counter = itertools.count(1)

    async def _make(**kwargs):
        n = next(counter)
        values = {
            "brand": "Maruti",
            "model": "Swift",
            "registration_number": f"KA01AB{n:04d}",
            "price_per_day": 1000,
            "status": "active",
            "is_available": True,
        }
        values.update(kwargs)
        car = Car(**values)
        db.add(car)
        await db.commit()
        return car

    return _make


@pytest.fixture
def make_booking(db):
    counter = itertools.count(1)

    async def _make(car, user, start, end, start_time=None, end_time=None, status="pending", final_price=1000):
        n = next(counter)
        booking = Booking(
            booking_id=f"BK{n:06d}AAA",
            car_id=car.id,
            user_id=user.id,
            trip_start_location="Koramangala",
            trip_start_date=start,
            trip_start_time=start_time,
            trip_end_location="Indiranagar",
            trip_end_date=end,
            trip_end_time=end_time,
            total_days=1,
            final_price=final_price,
            status=status,
        )
        db.add(booking)
        await db.commit()
        return booking

    return _make


@pytest.fixture
async def client(session_factory):
    from rental_service.main import app
    from rental_service.routes import get_db

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
