from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from src.infrastructure.db.models import Base, Event
from src.infrastructure.db.session import engine, get_db_session
from src.infrastructure.repositories.seat_repository import SeatRepository


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


EVENT_DEFS = [
    {
        "title": "SRS Annual Family Dinner",
        "location": "Community Hall, Sector 21",
        "start_date": _dt(days_from_now=10, hour=19, minute=30),
        "end_date": _dt(days_from_now=10, hour=23, minute=0),
        "max_capacity": 250,
        "user_price": 1200,
        "member_price": 900,
        "guest_price": 1500,
        "kid_price": 400,
    },
    {
        "title": "Holi Milan 2026",
        "location": "SRS Club Grounds",
        "start_date": _dt(days_from_now=15, hour=11, minute=0),
        "end_date": _dt(days_from_now=15, hour=17, minute=0),
        "max_capacity": 600,
        "user_price": 800,
        "member_price": 600,
        "guest_price": 1000,
        "kid_price": 200,
        "max_tickets_per_member": 12,
    },
]


def seed_events(db) -> int:
    repository = SeatRepository(db)
    created = 0
    for item in EVENT_DEFS:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            existing.location = item["location"]
            existing.start_date = item["start_date"]
            existing.end_date = item["end_date"]
            existing.user_price = item["user_price"]
            existing.member_price = item["member_price"]
            existing.guest_price = item["guest_price"]
            existing.kid_price = item["kid_price"]
            # never shrink below seats already sold
            existing.max_capacity = max(item["max_capacity"], existing.booked_seats)
            existing.is_active = True
            continue

        repository.create_event(**item)
        created += 1
    return created


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        created = seed_events(db)
    print(f"Seed complete: {created} new event(s), {len(EVENT_DEFS) - created} refreshed.")


if __name__ == "__main__":
    main()
