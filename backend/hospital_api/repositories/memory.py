"""In-process storage backend.

Records are kept as pydantic models and copied on the way in and out, so
callers never share mutable state with the store. A single asyncio lock per
collection makes each write atomic.
"""
import asyncio
from typing import Dict, List, Optional
from uuid import uuid4

from hospital_api.errors import DuplicateRecord
from hospital_api.repositories.base import (
    AppointmentRepository,
    DoctorRepository,
    IdentityRepository,
    Repositories,
)
from hospital_api.schemas import Appointment, DoctorProfile, Identity


class InMemoryIdentityRepository(IdentityRepository):
    def __init__(self) -> None:
        self._items: Dict[str, Identity] = {}
        self._lock = asyncio.Lock()

    async def get(self, uid: str) -> Optional[Identity]:
        item = self._items.get(uid)
        return item.model_copy(deep=True) if item else None

    async def insert(self, identity: Identity) -> Identity:
        async with self._lock:
            if identity.uid in self._items:
                raise DuplicateRecord(identity.uid)
            self._items[identity.uid] = identity.model_copy(deep=True)
        return identity.model_copy(deep=True)

    async def update(self, uid: str, fields: dict) -> Optional[Identity]:
        async with self._lock:
            item = self._items.get(uid)
            if not item:
                return None
            updated = item.model_copy(update=fields, deep=True)
            self._items[uid] = updated
            return updated.model_copy(deep=True)

    def count(self) -> int:
        return len(self._items)


class InMemoryDoctorRepository(DoctorRepository):
    def __init__(self) -> None:
        self._items: Dict[str, DoctorProfile] = {}
        self._lock = asyncio.Lock()

    async def get(self, doctor_id: str) -> Optional[DoctorProfile]:
        item = self._items.get(doctor_id)
        return item.model_copy(deep=True) if item else None

    async def find_by_email(self, email: str) -> Optional[DoctorProfile]:
        email = email.strip().lower()
        for item in self._items.values():
            if item.contact_email == email:
                return item.model_copy(deep=True)
        return None

    async def find_by_identity(self, uid: str) -> Optional[DoctorProfile]:
        for item in self._items.values():
            if item.identity_uid == uid:
                return item.model_copy(deep=True)
        return None

    async def list(self, *, available_only: bool = False) -> List[DoctorProfile]:
        items = [i for i in self._items.values() if i.available or not available_only]
        return [i.model_copy(deep=True) for i in sorted(items, key=lambda d: d.name)]

    async def insert(self, profile: DoctorProfile) -> DoctorProfile:
        async with self._lock:
            if any(i.contact_email == profile.contact_email for i in self._items.values()):
                raise DuplicateRecord(profile.contact_email)
            stored = profile.model_copy(update={"doctor_id": profile.doctor_id or uuid4().hex}, deep=True)
            self._items[stored.doctor_id] = stored
        return stored.model_copy(deep=True)

    async def update(self, doctor_id: str, fields: dict) -> Optional[DoctorProfile]:
        async with self._lock:
            item = self._items.get(doctor_id)
            if not item:
                return None
            updated = item.model_copy(update=fields, deep=True)
            self._items[doctor_id] = updated
            return updated.model_copy(deep=True)

    async def delete(self, doctor_id: str) -> bool:
        async with self._lock:
            return self._items.pop(doctor_id, None) is not None

    async def link_identity(self, doctor_id: str, uid: str) -> bool:
        async with self._lock:
            item = self._items.get(doctor_id)
            if not item or item.identity_uid is not None:
                return False
            item.identity_uid = uid
            return True


class InMemoryAppointmentRepository(AppointmentRepository):
    def __init__(self) -> None:
        self._items: Dict[str, Appointment] = {}
        self._lock = asyncio.Lock()

    async def insert(self, appointment: Appointment) -> Appointment:
        async with self._lock:
            stored = appointment.model_copy(update={"id": appointment.id or uuid4().hex}, deep=True)
            self._items[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        item = self._items.get(appointment_id)
        return item.model_copy(deep=True) if item else None

    async def list(
        self,
        *,
        patient_uid: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> List[Appointment]:
        items = [
            i for i in self._items.values()
            if (patient_uid is None or i.patient_uid == patient_uid)
            and (doctor_id is None or i.doctor_id == doctor_id)
        ]
        items.sort(key=lambda a: a.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in items]

    async def compare_and_set(self, appointment: Appointment, *, expected_version: int) -> bool:
        async with self._lock:
            current = self._items.get(appointment.id)
            if current is None or current.version != expected_version:
                return False
            self._items[appointment.id] = appointment.model_copy(deep=True)
            return True

    async def delete(self, appointment_id: str) -> bool:
        async with self._lock:
            return self._items.pop(appointment_id, None) is not None


def build_memory_repositories() -> Repositories:
    return Repositories(
        identities=InMemoryIdentityRepository(),
        doctors=InMemoryDoctorRepository(),
        appointments=InMemoryAppointmentRepository(),
    )
