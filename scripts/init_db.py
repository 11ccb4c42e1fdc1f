"""
Create all tables and optionally seed sample contractors.
Run from backend dir: python scripts/init_db.py [--seed]
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, SessionLocal, engine, transaction
from models import Contractor, User

SAMPLE_CONTRACTORS = [
    ("roadworks@example.com", "City Roadworks Ltd", "+91-44-2000-0001", 13.0827, 80.2707, 5.0),
    ("asphalt@example.com", "Asphalt Partners", "+91-44-2000-0002", 13.0500, 80.2500, 8.0),
]


def seed_contractors(db):
    """Insert the sample contractors that are not there yet."""
    added = 0
    with transaction(db, "seed_contractors"):
        for email, company, phone, lat, lng, radius_km in SAMPLE_CONTRACTORS:
            if db.query(User).filter(User.email == email).first():
                continue
            user = User(email=email, role="contractor")
            db.add(user)
            db.flush()
            db.add(Contractor(
                user_id=user.id,
                company_name=company,
                contact_email=email,
                contact_phone=phone,
                service_area_lat=lat,
                service_area_lng=lng,
                service_radius_km=radius_km,
                is_active=True,
            ))
            added += 1
    return added


def main():
    Base.metadata.create_all(bind=engine)
    print("Tables ensured.")
    if "--seed" in sys.argv[1:]:
        db = SessionLocal()
        try:
            print(f"Seeded {seed_contractors(db)} contractors.")
        finally:
            db.close()


if __name__ == "__main__":
    main()
