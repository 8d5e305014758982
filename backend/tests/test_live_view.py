import pytest

from hospital_api.constants import AppointmentStatus
from hospital_api.errors import Forbidden, Unavailable, ValidationError
from hospital_api.schemas import Principal
from hospital_api.services.identity_service import IdentityResolver
from hospital_api.services.live_view import LiveViewHub, ViewSpec, resolve_view


async def _next(sub):
    return await sub.__anext__()


async def test_doctor_view_receives_booking_and_patient_view_receives_confirmation(
    projection, store, machine, patient, doctor, doctor_profile, make_booking
):
    doctor_snapshot, doctor_feed = await projection.subscribe(caller=doctor, scope="mine")
    patient_snapshot, patient_feed = await projection.subscribe(caller=patient, scope="mine")
    assert doctor_snapshot == [] and patient_snapshot == []

    ap = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))
    created = await _next(doctor_feed)
    assert created.kind == "created"
    assert created.appointment.id == ap.id
    assert created.appointment.status == AppointmentStatus.PENDING

    await machine.transition(caller=doctor, appointment_id=ap.id, target=AppointmentStatus.CONFIRMED)

    assert (await _next(patient_feed)).kind == "created"
    updated = await _next(patient_feed)
    assert updated.kind == "updated"
    assert updated.appointment.status == AppointmentStatus.CONFIRMED
    assert updated.appointment.version == 2

    doctor_feed.cancel()
    patient_feed.cancel()


async def test_snapshot_is_scoped_and_newest_first(
    projection, store, patient, other_patient, doctor_profile, make_booking
):
    first = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))
    await store.create(caller=other_patient, payload=make_booking(doctor_profile.doctor_id))
    second = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))

    snapshot, sub = await projection.subscribe(caller=patient, scope="mine")

    assert [a.id for a in snapshot] == [second.id, first.id]
    sub.cancel()


async def test_changes_outside_the_view_are_not_delivered(
    projection, store, patient, other_patient, doctor_profile, make_booking
):
    _, sub = await projection.subscribe(caller=patient, scope="mine")

    await store.create(caller=other_patient, payload=make_booking(doctor_profile.doctor_id))
    mine = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))

    event = await _next(sub)
    assert event.appointment.id == mine.id
    sub.cancel()


async def test_stale_and_replayed_events_are_dropped(projection, hub, store, patient, doctor_profile, make_booking):
    ap = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))
    snapshot, sub = await projection.subscribe(caller=patient, scope="mine")
    assert snapshot[0].version == 1

    v3 = ap.model_copy(update={"version": 3, "status": AppointmentStatus.CANCELLED})
    v2 = ap.model_copy(update={"version": 2, "status": AppointmentStatus.CONFIRMED})
    hub.publish("created", ap)  # already in the snapshot
    hub.publish("updated", v3)
    hub.publish("updated", v2)  # older than what was delivered
    hub.publish("deleted", v3)

    first = await _next(sub)
    assert (first.kind, first.appointment.version) == ("updated", 3)
    assert (await _next(sub)).kind == "deleted"

    sub.cancel()
    assert [e async for e in sub] == []


async def test_deleted_appointment_is_announced(projection, store, admin, patient, appointment):
    _, sub = await projection.subscribe(caller=patient, scope="mine")

    await store.delete(caller=admin, appointment_id=appointment.id)

    event = await _next(sub)
    assert event.kind == "deleted"
    assert event.appointment.id == appointment.id
    sub.cancel()


async def test_cancel_releases_subscription(projection, hub, patient):
    _, sub = await projection.subscribe(caller=patient, scope="mine")
    assert hub.subscriber_count == 1

    sub.cancel()
    sub.cancel()

    assert sub.closed
    assert hub.subscriber_count == 0
    with pytest.raises(StopAsyncIteration):
        await _next(sub)


async def test_context_manager_cancels(projection, hub, patient):
    _, sub = await projection.subscribe(caller=patient, scope="mine")
    async with sub:
        assert hub.subscriber_count == 1
    assert hub.subscriber_count == 0


async def test_feed_failure_ends_iteration_with_error(projection, hub, store, patient, doctor_profile, make_booking):
    _, sub = await projection.subscribe(caller=patient, scope="mine")
    await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))

    hub.fail()

    assert (await _next(sub)).kind == "created"
    with pytest.raises(Unavailable):
        await _next(sub)
    with pytest.raises(Unavailable):
        await projection.subscribe(caller=patient, scope="mine")


async def test_slow_subscriber_is_failed_not_silently_dropped(repos, store, patient, doctor_profile, make_booking):
    hub = LiveViewHub(max_pending=2)
    sub = hub.open(ViewSpec("patient", patient.uid))
    ap = await store.create(caller=patient, payload=make_booking(doctor_profile.doctor_id))

    for version in (1, 2, 3):
        hub.publish("updated", ap.model_copy(update={"version": version}))

    with pytest.raises(Unavailable):
        await _next(sub)
    assert hub.subscriber_count == 0


async def test_scope_rules(repos, admin, patient, doctor, doctor_profile):
    assert await resolve_view(admin, "mine", repos) == ViewSpec("admin")
    assert await resolve_view(admin, "all", repos) == ViewSpec("admin")
    assert await resolve_view(admin, f"patient:{patient.uid}", repos) == ViewSpec("patient", patient.uid)
    assert await resolve_view(patient, "mine", repos) == ViewSpec("patient", patient.uid)
    assert await resolve_view(patient, f"patient:{patient.uid}", repos) == ViewSpec("patient", patient.uid)
    assert await resolve_view(doctor, "mine", repos) == ViewSpec("doctor", doctor_profile.doctor_id)
    assert await resolve_view(doctor, f"doctor:{doctor_profile.doctor_id}", repos) == ViewSpec(
        "doctor", doctor_profile.doctor_id
    )


@pytest.mark.parametrize("scope", ["all", "patient:patient-2", "doctor:anything"])
async def test_patient_cannot_widen_scope(repos, patient, scope):
    with pytest.raises(Forbidden):
        await resolve_view(patient, scope, repos)


@pytest.mark.parametrize("scope", ["everything", "doctor:", "nurse:1"])
async def test_unknown_scope(repos, patient, scope):
    with pytest.raises(ValidationError):
        await resolve_view(patient, scope, repos)


async def test_doctor_without_profile_has_no_view(repos, settings):
    enabled = settings.model_copy(update={"DOCTOR_EMAIL_HEURISTIC_ENABLED": True})
    unlinked = await IdentityResolver(repos, enabled).resolve(Principal(uid="u-dr", email="dr.who@rajana.com"))

    with pytest.raises(Forbidden):
        await resolve_view(unlinked, "mine", repos)
