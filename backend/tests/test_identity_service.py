import asyncio

import pytest

from hospital_api.constants import AppointmentStatus, Role
from hospital_api.errors import NotFound, Unavailable, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import DoctorCreate, Principal
from hospital_api.services.identity_service import IdentityResolver

ADMIN_EMAIL = "admin@rajana.com"


async def test_admin_email_resolves_to_single_admin_record(resolver, repos):
    first = await resolver.resolve(Principal(uid="u-admin", email=ADMIN_EMAIL))
    second = await resolver.resolve(Principal(uid="u-admin", email=ADMIN_EMAIL))

    assert first.role == Role.ADMIN
    assert second == first
    assert repos.identities.count() == 1


async def test_admin_email_match_is_case_insensitive(resolver):
    identity = await resolver.resolve(Principal(uid="u-admin", email="  Admin@Rajana.com "))
    assert identity.role == Role.ADMIN
    assert identity.email == ADMIN_EMAIL


async def test_unknown_email_becomes_patient(resolver):
    identity = await resolver.resolve(Principal(uid="u-1", email="jane@example.com", display_name="Jane"))
    assert identity.role == Role.PATIENT
    assert identity.display_name == "Jane"


async def test_patient_display_name_defaults_to_email_local_part(resolver):
    identity = await resolver.resolve(Principal(uid="u-1", email="jane@example.com"))
    assert identity.display_name == "jane"


async def test_doctor_profile_email_links_profile(resolver, repos, doctor_profile):
    identity = await resolver.resolve(Principal(uid="doc-uid", email="Sarah.Smith@rajana.com"))

    assert identity.role == Role.DOCTOR
    assert identity.display_name == doctor_profile.name
    linked = await repos.doctors.get(doctor_profile.doctor_id)
    assert linked.identity_uid == "doc-uid"


async def test_existing_identity_is_returned_unchanged(resolver, directory):
    before = await resolver.resolve(Principal(uid="u-1", email="late.doctor@rajana.com"))
    await directory.create(DoctorCreate(name="Dr. Late", specialty="Oncology", contactEmail="late.doctor@rajana.com"))

    after = await resolver.resolve(Principal(uid="u-1", email="late.doctor@rajana.com"))

    assert before.role == Role.PATIENT
    assert after == before


async def test_profile_linked_to_other_uid_is_not_taken_over(resolver, repos, doctor_profile):
    assert await repos.doctors.link_identity(doctor_profile.doctor_id, "first-uid")

    identity = await resolver.resolve(Principal(uid="second-uid", email="sarah.smith@rajana.com"))

    assert identity.role == Role.PATIENT
    profile = await repos.doctors.get(doctor_profile.doctor_id)
    assert profile.identity_uid == "first-uid"


async def test_concurrent_first_logins_link_profile_once(resolver, repos, doctor_profile):
    results = await asyncio.gather(
        resolver.resolve(Principal(uid="uid-a", email="sarah.smith@rajana.com")),
        resolver.resolve(Principal(uid="uid-b", email="sarah.smith@rajana.com")),
    )

    doctors = [r for r in results if r.role == Role.DOCTOR]
    assert len(doctors) == 1
    profile = await repos.doctors.get(doctor_profile.doctor_id)
    assert profile.identity_uid == doctors[0].uid


async def test_doctor_email_convention_is_ignored_by_default(resolver):
    identity = await resolver.resolve(Principal(uid="u-dr", email="dr.house@rajana.com"))
    assert identity.role == Role.PATIENT


async def test_doctor_email_convention_when_enabled(repos, settings):
    enabled = settings.model_copy(update={"DOCTOR_EMAIL_HEURISTIC_ENABLED": True})
    resolver = IdentityResolver(repos, enabled)

    identity = await resolver.resolve(Principal(uid="u-dr", email="dr.house@rajana.com"))
    outsider = await resolver.resolve(Principal(uid="u-x", email="dr.house@elsewhere.com"))

    assert identity.role == Role.DOCTOR
    assert await repos.doctors.find_by_identity("u-dr") is None
    assert outsider.role == Role.PATIENT


class _BrokenIdentities:
    """Identity store that cannot be reached."""

    async def get(self, uid):
        return None

    async def insert(self, identity):
        raise Unavailable("store is down")

    async def update(self, uid, fields):
        raise Unavailable("store is down")


async def test_resolution_fails_closed_when_store_is_down(repos, settings):
    broken = Repositories(identities=_BrokenIdentities(), doctors=repos.doctors, appointments=repos.appointments)
    resolver = IdentityResolver(broken, settings)

    with pytest.raises(Unavailable):
        await resolver.resolve(Principal(uid="u-admin", email=ADMIN_EMAIL))


async def test_update_display_name(resolver, patient):
    updated = await resolver.update_display_name(patient.uid, "  Jane D. ")
    assert updated.display_name == "Jane D."
    assert updated.role == patient.role
    assert (await resolver.get(patient.uid)).display_name == "Jane D."


async def test_update_display_name_rejects_blank(resolver, patient):
    with pytest.raises(ValidationError):
        await resolver.update_display_name(patient.uid, "   ")


async def test_update_display_name_unknown_uid(resolver):
    with pytest.raises(NotFound):
        await resolver.update_display_name("nobody", "Name")


async def test_doctor_is_relinked_to_recreated_profile(
    resolver, directory, repos, store, machine, patient, make_booking
):
    first = await directory.create(
        DoctorCreate(name="Dr. Sarah Smith", specialty="Cardiology", contactEmail="sarah.smith@rajana.com")
    )
    doctor = await resolver.resolve(Principal(uid="doc-a", email="sarah.smith@rajana.com"))
    await directory.delete(first.doctor_id)
    second = await directory.create(
        DoctorCreate(name="Dr. Sarah Smith", specialty="Cardiology", contactEmail="sarah.smith@rajana.com")
    )

    again = await resolver.resolve(Principal(uid="doc-a", email="sarah.smith@rajana.com"))

    assert again == doctor
    assert again.role == Role.DOCTOR
    assert (await repos.doctors.get(second.doctor_id)).identity_uid == "doc-a"

    ap = await store.create(caller=patient, payload=make_booking(second.doctor_id))
    confirmed = await machine.transition(caller=again, appointment_id=ap.id, target=AppointmentStatus.CONFIRMED)
    assert confirmed.status == AppointmentStatus.CONFIRMED


async def test_recreated_profile_claimed_by_other_uid_is_left_alone(resolver, directory, repos):
    first = await directory.create(
        DoctorCreate(name="Dr. Sarah Smith", specialty="Cardiology", contactEmail="sarah.smith@rajana.com")
    )
    await resolver.resolve(Principal(uid="doc-a", email="sarah.smith@rajana.com"))
    await directory.delete(first.doctor_id)
    second = await directory.create(
        DoctorCreate(name="Dr. Sarah Smith", specialty="Cardiology", contactEmail="sarah.smith@rajana.com")
    )
    assert await repos.doctors.link_identity(second.doctor_id, "doc-b")

    again = await resolver.resolve(Principal(uid="doc-a", email="sarah.smith@rajana.com"))

    assert again.role == Role.DOCTOR
    assert (await repos.doctors.get(second.doctor_id)).identity_uid == "doc-b"


async def test_phone_is_captured_on_first_resolution_only(resolver):
    first = await resolver.resolve(Principal(uid="u-1", email="jane@example.com"), phone="+964 770 123 4567")
    again = await resolver.resolve(Principal(uid="u-1", email="jane@example.com"), phone="0000000")

    assert first.phone == "+964 770 123 4567"
    assert again.phone == "+964 770 123 4567"


async def test_doctor_profile_phone_wins_over_signup_phone(resolver, directory):
    await directory.create(
        DoctorCreate(
            name="Dr. Sarah Smith",
            specialty="Cardiology",
            contactEmail="sarah.smith@rajana.com",
            phone="07701112222",
        )
    )

    identity = await resolver.resolve(Principal(uid="doc-a", email="sarah.smith@rajana.com"), phone="07709998888")

    assert identity.phone == "07701112222"


async def test_update_contact_sets_and_clears_phone(resolver, patient):
    updated = await resolver.update_contact(patient.uid, phone="07701234567")
    assert updated.phone == "07701234567"
    assert updated.display_name == patient.display_name

    cleared = await resolver.update_contact(patient.uid, clear_phone=True)
    assert cleared.phone is None
    assert (await resolver.get(patient.uid)).phone is None
