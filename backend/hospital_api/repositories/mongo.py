"""MongoDB storage backend built on Beanie documents."""
from typing import List, Optional

from beanie import PydanticObjectId as OID
from beanie.operators import Set
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError, PyMongoError

from hospital_api.errors import DuplicateRecord, Unavailable
from hospital_api.models import AppointmentDoc, DoctorDoc, IdentityDoc
from hospital_api.repositories.base import (
    AppointmentRepository,
    DoctorRepository,
    IdentityRepository,
)
from hospital_api.schemas import Appointment, DoctorProfile, Identity
from hospital_api.utils.logger import get_logger

logger = get_logger("mongo_repository")


def _oid(value: str) -> Optional[OID]:
    try:
        return OID(value)
    except (InvalidId, TypeError):
        return None


def _unavailable(e: PyMongoError) -> Unavailable:
    logger.error(f"MongoDB error: {e}")
    return Unavailable("Storage is unavailable")


def _identity_from_doc(doc: IdentityDoc) -> Identity:
    return Identity(
        uid=doc.uid,
        email=doc.email,
        display_name=doc.display_name,
        role=doc.role,
        phone=doc.phone,
        created_at=doc.created_at,
    )


def _doctor_from_doc(doc: DoctorDoc) -> DoctorProfile:
    return DoctorProfile(
        doctor_id=str(doc.id),
        identity_uid=doc.identity_uid,
        name=doc.name,
        specialty=doc.specialty,
        contact_email=doc.contact_email,
        phone=doc.phone,
        bio=doc.bio,
        experience=doc.experience,
        available=doc.available,
    )


def _appointment_from_doc(doc: AppointmentDoc) -> Appointment:
    return Appointment(
        id=str(doc.id),
        patient_uid=doc.patient_uid,
        patient_name=doc.patient_name,
        patient_contact=doc.patient_contact,
        doctor_id=doc.doctor_id,
        doctor_name=doc.doctor_name,
        date=doc.calendar_date,
        time=doc.time,
        reason=doc.reason,
        status=doc.status,
        remarks=doc.remarks,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
        version=doc.version,
    )


def _appointment_fields(ap: Appointment) -> dict:
    return {
        "patient_uid": ap.patient_uid,
        "patient_name": ap.patient_name,
        "patient_contact": ap.patient_contact,
        "doctor_id": ap.doctor_id,
        "doctor_name": ap.doctor_name,
        "day": ap.date.isoformat(),
        "time": ap.time,
        "reason": ap.reason,
        "status": ap.status.value,
        "remarks": ap.remarks,
        "version": ap.version,
        "created_at": ap.created_at,
        "updated_at": ap.updated_at,
    }


class MongoIdentityRepository(IdentityRepository):
    async def get(self, uid: str) -> Optional[Identity]:
        try:
            doc = await IdentityDoc.find_one(IdentityDoc.uid == uid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _identity_from_doc(doc) if doc else None

    async def insert(self, identity: Identity) -> Identity:
        doc = IdentityDoc(
            uid=identity.uid,
            email=identity.email,
            display_name=identity.display_name,
            role=identity.role,
            phone=identity.phone,
            created_at=identity.created_at,
        )
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise DuplicateRecord(identity.uid) from e
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _identity_from_doc(doc)

    async def update(self, uid: str, fields: dict) -> Optional[Identity]:
        try:
            doc = await IdentityDoc.find_one(IdentityDoc.uid == uid)
            if not doc:
                return None
            if fields:
                await doc.update(Set(fields))
                doc = await IdentityDoc.find_one(IdentityDoc.uid == uid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _identity_from_doc(doc) if doc else None


class MongoDoctorRepository(DoctorRepository):
    async def get(self, doctor_id: str) -> Optional[DoctorProfile]:
        oid = _oid(doctor_id)
        if oid is None:
            return None
        try:
            doc = await DoctorDoc.get(oid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _doctor_from_doc(doc) if doc else None

    async def find_by_email(self, email: str) -> Optional[DoctorProfile]:
        try:
            doc = await DoctorDoc.find_one(DoctorDoc.contact_email == email.strip().lower())
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _doctor_from_doc(doc) if doc else None

    async def find_by_identity(self, uid: str) -> Optional[DoctorProfile]:
        try:
            doc = await DoctorDoc.find_one(DoctorDoc.identity_uid == uid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _doctor_from_doc(doc) if doc else None

    async def list(self, *, available_only: bool = False) -> List[DoctorProfile]:
        query = DoctorDoc.find(DoctorDoc.available == True) if available_only else DoctorDoc.find()  # noqa: E712
        try:
            docs = await query.sort(+DoctorDoc.name).to_list()
        except PyMongoError as e:
            raise _unavailable(e) from e
        return [_doctor_from_doc(d) for d in docs]

    async def insert(self, profile: DoctorProfile) -> DoctorProfile:
        doc = DoctorDoc(
            contact_email=profile.contact_email,
            identity_uid=profile.identity_uid,
            name=profile.name,
            specialty=profile.specialty,
            phone=profile.phone,
            bio=profile.bio,
            experience=profile.experience,
            available=profile.available,
        )
        try:
            await doc.insert()
        except DuplicateKeyError as e:
            raise DuplicateRecord(profile.contact_email) from e
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _doctor_from_doc(doc)

    async def update(self, doctor_id: str, fields: dict) -> Optional[DoctorProfile]:
        oid = _oid(doctor_id)
        if oid is None:
            return None
        try:
            doc = await DoctorDoc.get(oid)
            if not doc:
                return None
            if fields:
                await doc.update(Set(fields))
                doc = await DoctorDoc.get(oid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _doctor_from_doc(doc) if doc else None

    async def delete(self, doctor_id: str) -> bool:
        oid = _oid(doctor_id)
        if oid is None:
            return False
        try:
            doc = await DoctorDoc.get(oid)
            if not doc:
                return False
            await doc.delete()
        except PyMongoError as e:
            raise _unavailable(e) from e
        return True

    async def link_identity(self, doctor_id: str, uid: str) -> bool:
        oid = _oid(doctor_id)
        if oid is None:
            return False
        try:
            # Conditional write: matches only while the link is still empty
            result = await DoctorDoc.get_motor_collection().update_one(
                {"_id": oid, "identity_uid": None},
                {"$set": {"identity_uid": uid}},
            )
        except PyMongoError as e:
            raise _unavailable(e) from e
        return result.modified_count == 1


class MongoAppointmentRepository(AppointmentRepository):
    async def insert(self, appointment: Appointment) -> Appointment:
        doc = AppointmentDoc(**_appointment_fields(appointment))
        try:
            await doc.insert()
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _appointment_from_doc(doc)

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        oid = _oid(appointment_id)
        if oid is None:
            return None
        try:
            doc = await AppointmentDoc.get(oid)
        except PyMongoError as e:
            raise _unavailable(e) from e
        return _appointment_from_doc(doc) if doc else None

    async def list(
        self,
        *,
        patient_uid: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> List[Appointment]:
        query = AppointmentDoc.find()
        if patient_uid is not None:
            query = query.find(AppointmentDoc.patient_uid == patient_uid)
        if doctor_id is not None:
            query = query.find(AppointmentDoc.doctor_id == doctor_id)
        try:
            docs = await query.sort(-AppointmentDoc.created_at).to_list()
        except PyMongoError as e:
            raise _unavailable(e) from e
        return [_appointment_from_doc(d) for d in docs]

    async def compare_and_set(self, appointment: Appointment, *, expected_version: int) -> bool:
        oid = _oid(appointment.id)
        if oid is None:
            return False
        try:
            result = await AppointmentDoc.get_motor_collection().update_one(
                {"_id": oid, "version": expected_version},
                {"$set": _appointment_fields(appointment)},
            )
        except PyMongoError as e:
            raise _unavailable(e) from e
        return result.modified_count == 1

    async def delete(self, appointment_id: str) -> bool:
        oid = _oid(appointment_id)
        if oid is None:
            return False
        try:
            result = await AppointmentDoc.get_motor_collection().delete_one({"_id": oid})
        except PyMongoError as e:
            raise _unavailable(e) from e
        return result.deleted_count == 1

    async def ping(self) -> bool:
        try:
            await AppointmentDoc.get_motor_collection().database.command("ping")
            return True
        except PyMongoError:
            return False
