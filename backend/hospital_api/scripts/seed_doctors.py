"""
Script to seed the doctor directory.

Each profile is linked automatically the first time a user with the same
email logs in. Existing emails are skipped, so the script can be re-run.
"""
import asyncio
import sys

# Fix encoding for Windows console
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from hospital_api.config import get_settings
from hospital_api.database import init_db, close_db
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import DoctorCreate
from hospital_api.services.doctor_service import DoctorDirectory

DEFAULT_DOCTORS = [
    DoctorCreate(
        name="Dr. Sarah Smith",
        specialty="Cardiology",
        contactEmail="sarah.smith@rajana.com",
        phone="+1 (555) 123-4567",
        experience="15 years",
        bio="Specialist in interventional cardiology and heart failure care.",
    ),
    DoctorCreate(
        name="Dr. Michael Johnson",
        specialty="Neurology",
        contactEmail="michael.johnson@rajana.com",
        phone="+1 (555) 123-4568",
        experience="12 years",
        bio="Treats epilepsy, stroke recovery and movement disorders.",
    ),
    DoctorCreate(
        name="Dr. Emily Williams",
        specialty="Pediatrics",
        contactEmail="emily.williams@rajana.com",
        phone="+1 (555) 123-4569",
        experience="10 years",
        bio="General pediatrics from newborns to adolescents.",
    ),
]


async def seed_doctors(repos: Repositories, doctors=DEFAULT_DOCTORS) -> int:
    """Insert missing doctors; returns how many were created."""
    directory = DoctorDirectory(repos)
    created = 0
    for payload in doctors:
        if await repos.doctors.find_by_email(payload.contactEmail):
            print(f"[SKIP] {payload.contactEmail} already exists")
            continue
        profile = await directory.create(payload)
        print(f"[OK] {profile.name} ({profile.specialty}) -> {profile.doctor_id}")
        created += 1
    return created


async def main():
    print("=" * 50)
    print("Seeding doctor directory")
    print("=" * 50)

    settings = get_settings()
    print(f"\nStorage: {settings.STORAGE_BACKEND} ({settings.MONGODB_URI})")

    repos = await init_db(settings)
    try:
        created = await seed_doctors(repos)
        print(f"\n[SUCCESS] {created} doctor(s) created")
    finally:
        close_db()


if __name__ == "__main__":
    asyncio.run(main())
