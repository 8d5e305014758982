from typing import List

from fastapi import APIRouter

from hospital_api.deps import CurrentServices
from hospital_api.schemas import DoctorOut

router = APIRouter(prefix="/doctors", tags=["doctors"])


@router.get("", response_model=List[DoctorOut])
async def list_available_doctors(services=CurrentServices):
    """Public directory: doctors currently accepting bookings."""
    doctors = await services.doctors.list(available_only=True)
    return [DoctorOut.from_profile(d) for d in doctors]


@router.get("/{doctor_id}", response_model=DoctorOut)
async def get_doctor(doctor_id: str, services=CurrentServices):
    doctor = await services.doctors.get(doctor_id)
    return DoctorOut.from_profile(doctor)
