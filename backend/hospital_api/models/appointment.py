from beanie import Document, Indexed
from pydantic import Field
from datetime import date, datetime, timezone

from hospital_api.constants import AppointmentStatus


class AppointmentDoc(Document):
    """موعد مريض لدى طبيب."""
    patient_uid: Indexed(str)
    patient_name: str
    patient_contact: str
    doctor_id: Indexed(str)
    doctor_name: str  # نسخة من اسم الطبيب وقت الحجز
    # stored as ISO string; BSON has no plain date type
    day: str
    time: str
    reason: str
    status: Indexed(str) = AppointmentStatus.PENDING.value
    remarks: str | None = None
    # يزداد مع كل كتابة، ويُستخدم للتحديث الشرطي (compare-and-set)
    version: int = 1
    created_at: Indexed(datetime) = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "appointments"

    @property
    def calendar_date(self) -> date:
        return date.fromisoformat(self.day)
