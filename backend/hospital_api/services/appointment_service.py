from datetime import datetime, timezone
from typing import Callable, List, Optional

from hospital_api.config import Settings
from hospital_api.constants import AppointmentStatus, Role
from hospital_api.errors import Forbidden, NotFound, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import Appointment, AppointmentCreate, DoctorProfile, Identity
from hospital_api.services.live_view import LiveViewHub, ViewSpec, resolve_view
from hospital_api.utils.logger import get_logger

logger = get_logger("appointment_service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def doctor_profile_for(repos: Repositories, caller: Identity) -> Optional[DoctorProfile]:
    """Doctor profile linked to the caller, if the caller is a doctor."""
    if caller.role != Role.DOCTOR:
        return None
    return await repos.doctors.find_by_identity(caller.uid)


async def can_view(repos: Repositories, caller: Identity, ap: Appointment) -> bool:
    """Owner patient, doctor of record, or any admin."""
    if caller.role == Role.ADMIN:
        return True
    if caller.role == Role.PATIENT:
        return ap.patient_uid == caller.uid
    profile = await doctor_profile_for(repos, caller)
    return profile is not None and profile.doctor_id == ap.doctor_id


class AppointmentStore:
    """Booking and reads. Status changes live in ``AppointmentStateMachine``."""

    def __init__(
        self,
        repos: Repositories,
        hub: LiveViewHub,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repos = repos
        self.hub = hub
        self.settings = settings
        self.clock = clock

    async def create(self, *, caller: Identity, payload: AppointmentCreate) -> Appointment:
        """
        Book a new appointment for the calling patient.
        - patient_uid is always the caller's uid, whatever the request says.
        - doctor_name is copied from the profile at booking time.
        - status starts as pending.
        """
        if caller.role != Role.PATIENT:
            raise Forbidden("Only patients can book appointments")

        missing = [
            name for name, value in (
                ("doctorId", payload.doctorId),
                ("date", payload.date),
                ("time", payload.time),
                ("reason", payload.reason),
            )
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        time_slot = payload.time.strip()
        if time_slot not in self.settings.time_slots:
            raise ValidationError(f"Unknown time slot: {time_slot}")

        doctor = await self.repos.doctors.get(payload.doctorId.strip())
        if not doctor:
            raise ValidationError("Selected doctor does not exist")
        if not doctor.available:
            raise ValidationError("Selected doctor is not available for booking")

        now = self.clock()
        ap = Appointment(
            id="",
            patient_uid=caller.uid,
            patient_name=caller.display_name,
            patient_contact=(payload.patientContact or "").strip() or caller.phone or caller.email,
            doctor_id=doctor.doctor_id,
            doctor_name=doctor.name,
            date=payload.date,
            time=time_slot,
            reason=payload.reason.strip(),
            status=AppointmentStatus.PENDING,
            created_at=now,
            updated_at=now,
            version=1,
        )
        ap = await self.repos.appointments.insert(ap)
        self.hub.publish("created", ap)
        logger.info(f"Appointment {ap.id} booked by {caller.uid} with doctor {doctor.doctor_id} on {ap.date} {ap.time}")
        return ap

    async def get(self, *, caller: Identity, appointment_id: str) -> Appointment:
        """Fetch one appointment; invisible records look exactly like missing ones."""
        ap = await self.repos.appointments.get(appointment_id)
        if not ap or not await can_view(self.repos, caller, ap):
            raise NotFound("Appointment not found")
        return ap

    async def list_for_patient(self, uid: str) -> List[Appointment]:
        return await self.repos.appointments.list(patient_uid=uid)

    async def list_for_doctor(self, doctor_id: str) -> List[Appointment]:
        return await self.repos.appointments.list(doctor_id=doctor_id)

    async def list_all(self) -> List[Appointment]:
        """Every appointment. Callers must already be verified as admin."""
        return await self.repos.appointments.list()

    async def list_for_scope(self, *, caller: Identity, scope: str) -> List[Appointment]:
        view = await resolve_view(caller, scope, self.repos)
        return await self.list_view(view)

    async def list_view(self, view: ViewSpec) -> List[Appointment]:
        if view.kind == "patient":
            return await self.list_for_patient(view.key)
        if view.kind == "doctor":
            return await self.list_for_doctor(view.key)
        return await self.list_all()

    async def delete(self, *, caller: Identity, appointment_id: str) -> None:
        """Admin-only removal."""
        if caller.role != Role.ADMIN:
            raise Forbidden("Only admins can delete appointments")
        ap = await self.repos.appointments.get(appointment_id)
        if not ap or not await self.repos.appointments.delete(appointment_id):
            raise NotFound("Appointment not found")
        self.hub.publish("deleted", ap)
        logger.info(f"Appointment {appointment_id} deleted by admin {caller.uid}")
