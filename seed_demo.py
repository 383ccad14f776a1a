"""Seed the database with demo competitors and monitoring jobs for UI testing."""

from rivalwatch.db.engine import SessionLocal, engine
from rivalwatch.db.base import Base

# Import all models so create_all knows about them
import rivalwatch.monitoring.models  # noqa: F401
import rivalwatch.alerts.models  # noqa: F401
import rivalwatch.gamification.models  # noqa: F401

from rivalwatch.monitoring.models import Competitor
from rivalwatch.monitoring.scheduler import MonitoringScheduler
from rivalwatch.monitoring.schemas import MonitoringConfig

DEMO_USER = "demo-user"

# Create tables
Base.metadata.create_all(engine)

db = SessionLocal()

# Check if already seeded
if db.query(Competitor).filter_by(user_id=DEMO_USER).count() > 0:
    print("Database already seeded. Skipping.")
    db.close()
    exit(0)

# --- Competitors ---
competitors = [
    Competitor(user_id=DEMO_USER, name="Crumb & Co. Bakery", industry="Food & Beverage",
               website="https://crumbandco.example",
               social_media_handles={"twitter": "crumbandco", "facebook": "crumbandco",
                                     "instagram": "crumbandco"}),
    Competitor(user_id=DEMO_USER, name="IronWorks Gym", industry="Health & Fitness",
               website="https://ironworks.example",
               social_media_handles={"twitter": "ironworksgym", "linkedin": "ironworks-gym"}),
    Competitor(user_id=DEMO_USER, name="Harbour Dental Group", industry="Healthcare",
               social_media_handles={"facebook": "harbourdental"}),
]
db.add_all(competitors)
db.commit()

# --- Monitoring jobs (one per platform with a handle) ---
scheduler = MonitoringScheduler(db)
job_count = 0
for competitor, frequency in zip(competitors, ["hourly", "daily", "weekly"]):
    job_count += len(
        scheduler.schedule_monitoring(
            competitor.id, DEMO_USER, MonitoringConfig(frequency=frequency)
        )
    )
db.close()

print(f"Seeded {len(competitors)} competitors and {job_count} monitoring jobs.")
