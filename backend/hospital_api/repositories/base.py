"""Storage interfaces shared by the Mongo and in-memory backends.

Repositories speak in domain records (``hospital_api.schemas``) and never
decide authorization; the services layer does that. Every method may raise
``Unavailable`` when the backing store cannot be reached.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from hospital_api.schemas import Appointment, DoctorProfile, Identity


class IdentityRepository(ABC):
    @abstractmethod
    async def get(self, uid: str) -> Optional[Identity]:
        ...

    @abstractmethod
    async def insert(self, identity: Identity) -> Identity:
        """Persist a new identity. Raises ``DuplicateRecord`` if the uid exists."""

    @abstractmethod
    async def update(self, uid: str, fields: dict) -> Optional[Identity]:
        """Set contact fields (display_name, phone). Role and uid never change."""


class DoctorRepository(ABC):
    @abstractmethod
    async def get(self, doctor_id: str) -> Optional[DoctorProfile]:
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[DoctorProfile]:
        ...

    @abstractmethod
    async def find_by_identity(self, uid: str) -> Optional[DoctorProfile]:
        ...

    @abstractmethod
    async def list(self, *, available_only: bool = False) -> List[DoctorProfile]:
        ...

    @abstractmethod
    async def insert(self, profile: DoctorProfile) -> DoctorProfile:
        """Persist a new profile and return it with its assigned ``doctor_id``.
        Raises ``DuplicateRecord`` if the contact email is taken."""

    @abstractmethod
    async def update(self, doctor_id: str, fields: dict) -> Optional[DoctorProfile]:
        ...

    @abstractmethod
    async def delete(self, doctor_id: str) -> bool:
        ...

    @abstractmethod
    async def link_identity(self, doctor_id: str, uid: str) -> bool:
        """Set ``identity_uid`` only while it is still unset.

        Returns True when this call wrote the link, False when another uid
        got there first.
        """


class AppointmentRepository(ABC):
    @abstractmethod
    async def insert(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment and return it with its assigned ``id``."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Optional[Appointment]:
        ...

    @abstractmethod
    async def list(
        self,
        *,
        patient_uid: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Matching appointments, newest ``created_at`` first."""

    @abstractmethod
    async def compare_and_set(self, appointment: Appointment, *, expected_version: int) -> bool:
        """Replace the stored record only if its version is still ``expected_version``."""

    @abstractmethod
    async def delete(self, appointment_id: str) -> bool:
        ...

    async def ping(self) -> bool:
        return True


@dataclass
class Repositories:
    identities: IdentityRepository
    doctors: DoctorRepository
    appointments: AppointmentRepository
