from typing import List

from hospital_api.errors import DuplicateRecord, NotFound, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import DoctorCreate, DoctorProfile, DoctorUpdate
from hospital_api.utils.logger import get_logger

logger = get_logger("doctor_service")


class DoctorDirectory:
    """Admin-managed doctor profiles (seeded before the doctor ever logs in)."""

    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    async def create(self, payload: DoctorCreate) -> DoctorProfile:
        profile = DoctorProfile(
            doctor_id="",
            name=payload.name.strip(),
            specialty=payload.specialty.strip(),
            contact_email=payload.contactEmail.strip().lower(),
            phone=payload.phone,
            bio=payload.bio,
            experience=payload.experience,
            available=payload.available,
        )
        try:
            profile = await self.repos.doctors.insert(profile)
        except DuplicateRecord:
            raise ValidationError("A doctor with this email already exists")
        logger.info(f"Doctor profile {profile.doctor_id} created for {profile.contact_email}")
        return profile

    async def get(self, doctor_id: str) -> DoctorProfile:
        profile = await self.repos.doctors.get(doctor_id)
        if not profile:
            raise NotFound("Doctor not found")
        return profile

    async def list(self, *, available_only: bool = False) -> List[DoctorProfile]:
        return await self.repos.doctors.list(available_only=available_only)

    async def update(self, doctor_id: str, payload: DoctorUpdate) -> DoctorProfile:
        fields = payload.model_dump(exclude_unset=True)
        for key in ("name", "specialty"):
            if key in fields and (fields[key] is None or not fields[key].strip()):
                raise ValidationError(f"{key} must not be empty")
        if fields.get("available") is None:
            fields.pop("available", None)
        profile = await self.repos.doctors.update(doctor_id, fields)
        if not profile:
            raise NotFound("Doctor not found")
        return profile

    async def delete(self, doctor_id: str) -> None:
        # Existing appointments keep their doctor_name snapshot
        if not await self.repos.doctors.delete(doctor_id):
            raise NotFound("Doctor not found")
        logger.info(f"Doctor profile {doctor_id} deleted")
