from database import engine, Base, SessionLocal
from models import Driver, VehicleType
import models  # noqa: F401
import argparse

def seed_demo_driver(db):
    """Create one approved, online driver so auto-assignment can be tried locally"""
    existing = db.query(Driver).filter(Driver.user_id == 1).first()
    if existing:
        print(f"Demo driver already exists: {existing.id}")
        return existing
    driver = Driver(
        user_id=1,
        full_name="Demo Driver",
        vehicle_type=VehicleType.TWO_WHEELER,
        capacity_kg=100,
        is_active=True,
        is_online=True,
        latitude=13.06,
        longitude=80.21,
    )
    db.add(driver)
    db.commit()
    print(f"Demo driver created: {driver.id}")
    return driver

def init_database(seed: bool = False):
    if engine is None:
        print("DATABASE_URL is not set, nothing to initialise")
        return
    Base.metadata.create_all(bind=engine)
    print("Database tables created successfully!")

    if not seed:
        return
    db = SessionLocal()
    try:
        seed_demo_driver(db)
    finally:
        db.close()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the dispatch tables")
    parser.add_argument("--seed", action="store_true", help="also create a demo driver")
    args = parser.parse_args()
    init_database(seed=args.seed)
