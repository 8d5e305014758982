from typing import List

from fastapi import APIRouter, Depends

from hospital_api.constants import Role
from hospital_api.deps import CurrentIdentity, CurrentServices
from hospital_api.schemas import DoctorCreate, DoctorOut, DoctorUpdate, Identity
from hospital_api.security import require_roles

router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_roles([Role.ADMIN]))]
)


@router.get("/doctors", response_model=List[DoctorOut])
async def list_doctors(services=CurrentServices):
    """كل الأطباء في الدليل، بما فيهم غير المتاحين."""
    doctors = await services.doctors.list()
    return [DoctorOut.from_profile(d) for d in doctors]


@router.post("/doctors", response_model=DoctorOut, status_code=201)
async def create_doctor(payload: DoctorCreate, services=CurrentServices):
    """Seed a doctor profile; it is linked when that email first logs in."""
    doctor = await services.doctors.create(payload)
    return DoctorOut.from_profile(doctor)


@router.patch("/doctors/{doctor_id}", response_model=DoctorOut)
async def update_doctor(doctor_id: str, payload: DoctorUpdate, services=CurrentServices):
    doctor = await services.doctors.update(doctor_id, payload)
    return DoctorOut.from_profile(doctor)


@router.delete("/doctors/{doctor_id}", status_code=204)
async def delete_doctor(doctor_id: str, services=CurrentServices):
    await services.doctors.delete(doctor_id)


@router.delete("/appointments/{appointment_id}", status_code=204)
async def delete_appointment(
    appointment_id: str,
    current: Identity = CurrentIdentity,
    services=CurrentServices,
):
    await services.appointments.delete(caller=current, appointment_id=appointment_id)
