import datetime as dt
import re
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Literal

from hospital_api.constants import Role, AppointmentStatus

_PHONE_RE = re.compile(r"^\+?[0-9][0-9 ()-]{5,18}[0-9]$")


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Trim and check a contact number; blank means no number."""
    if value is None:
        return None
    value = " ".join(value.split())
    if not value:
        return None
    if not _PHONE_RE.match(value):
        raise ValueError("phone must be 7-20 digits, optionally with +, spaces, dashes or brackets")
    return value

# -------------------- Domain records --------------------
# Storage-agnostic shapes passed between repositories and services.


class Principal(BaseModel):
    """What the authentication provider vouches for: a stable uid + email."""
    uid: str
    email: str
    display_name: Optional[str] = None


class Identity(BaseModel):
    uid: str
    email: str
    display_name: str
    role: Role
    phone: Optional[str] = None
    created_at: dt.datetime


class DoctorProfile(BaseModel):
    doctor_id: str
    identity_uid: Optional[str] = None
    name: str
    specialty: str
    contact_email: str
    phone: Optional[str] = None
    bio: str = ""
    experience: Optional[str] = None
    available: bool = True


class Appointment(BaseModel):
    id: str
    patient_uid: str
    patient_name: str
    patient_contact: str
    doctor_id: str
    doctor_name: str  # snapshot taken when the appointment is booked
    date: dt.date
    time: str
    reason: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    remarks: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    version: int = 1


# -------------------- Identity Schemas --------------------


class IdentityOut(BaseModel):
    uid: str
    email: str
    displayName: str
    role: Role
    phone: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(
            uid=identity.uid,
            email=identity.email,
            displayName=identity.display_name,
            role=identity.role,
            phone=identity.phone,
        )


class ResolveIdentityIn(BaseModel):
    """Optional signup details, used only the first time a principal is resolved."""
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v)


class IdentityUpdate(BaseModel):
    """Omitted fields stay as they are; an empty phone clears it."""
    displayName: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, v: Optional[str]) -> Optional[str]:
        return normalize_phone(v)


# -------------------- Doctor Schemas --------------------


class DoctorCreate(BaseModel):
    name: str = Field(..., min_length=1)
    specialty: str = Field(..., min_length=1)
    contactEmail: str = Field(..., min_length=3)
    phone: Optional[str] = None
    bio: str = ""
    experience: Optional[str] = None
    available: bool = True

    @field_validator("contactEmail")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("contactEmail must be an email address")
        return v


class DoctorUpdate(BaseModel):
    """Partial update; omitted fields are left as they are."""
    name: Optional[str] = None
    specialty: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    experience: Optional[str] = None
    available: Optional[bool] = None


class DoctorOut(BaseModel):
    doctorId: str
    name: str
    specialty: str
    contactEmail: str
    phone: Optional[str] = None
    bio: str = ""
    experience: Optional[str] = None
    available: bool
    linked: bool = False

    @classmethod
    def from_profile(cls, profile: DoctorProfile) -> "DoctorOut":
        return cls(
            doctorId=profile.doctor_id,
            name=profile.name,
            specialty=profile.specialty,
            contactEmail=profile.contact_email,
            phone=profile.phone,
            bio=profile.bio,
            experience=profile.experience,
            available=profile.available,
            linked=profile.identity_uid is not None,
        )


# -------------------- Appointment Schemas --------------------


class AppointmentCreate(BaseModel):
    """Booking request. Any patient identity in the body is ignored."""
    model_config = ConfigDict(extra="ignore")

    doctorId: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    reason: Optional[str] = None
    patientContact: Optional[str] = None


class AppointmentTransitionIn(BaseModel):
    targetStatus: AppointmentStatus
    remarks: Optional[str] = None


class AppointmentOut(BaseModel):
    id: str
    patientUid: str
    patientName: str
    patientContact: str
    doctorId: str
    doctorName: str
    date: dt.date
    time: str
    reason: str
    status: AppointmentStatus
    remarks: Optional[str] = None
    createdAt: dt.datetime
    updatedAt: dt.datetime
    version: int

    @classmethod
    def from_appointment(cls, ap: Appointment) -> "AppointmentOut":
        return cls(
            id=ap.id,
            patientUid=ap.patient_uid,
            patientName=ap.patient_name,
            patientContact=ap.patient_contact,
            doctorId=ap.doctor_id,
            doctorName=ap.doctor_name,
            date=ap.date,
            time=ap.time,
            reason=ap.reason,
            status=ap.status,
            remarks=ap.remarks,
            createdAt=ap.created_at,
            updatedAt=ap.updated_at,
            version=ap.version,
        )


class AppointmentDelta(BaseModel):
    """One live-view change pushed to a subscriber."""
    type: Literal["delta"] = "delta"
    kind: Literal["created", "updated", "deleted"]
    appointment: AppointmentOut


class AppointmentSnapshot(BaseModel):
    type: Literal["snapshot"] = "snapshot"
    appointments: List[AppointmentOut]
