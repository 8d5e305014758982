import os
from datetime import date, datetime, timedelta, timezone

# Settings are cached on first import; pin the test environment before that
os.environ["LOG_TO_FILE"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["AUTH_PROVIDER"] = "jwt"
os.environ["APP_DEBUG"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from hospital_api.config import get_settings
from hospital_api.constants import AppointmentStatus
from hospital_api.deps import build_services
from hospital_api.main import create_app
from hospital_api.repositories.memory import build_memory_repositories
from hospital_api.schemas import Appointment, AppointmentCreate, DoctorCreate, Principal
from hospital_api.security import create_principal_token
from hospital_api.services.appointment_service import AppointmentStore
from hospital_api.services.appointment_state import AppointmentStateMachine
from hospital_api.services.doctor_service import DoctorDirectory
from hospital_api.services.identity_service import IdentityResolver
from hospital_api.services.live_view import LiveViewHub, LiveViewProjection

ADMIN_EMAIL = "admin@rajana.com"


class FakeClock:
    """Deterministic clock: each call is one minute after the previous one."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


# -------------------- service-level fixtures --------------------


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def repos():
    return build_memory_repositories()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub():
    return LiveViewHub(max_pending=100)


@pytest.fixture
def resolver(repos, settings):
    return IdentityResolver(repos, settings)


@pytest.fixture
def directory(repos):
    return DoctorDirectory(repos)


@pytest.fixture
def store(repos, hub, settings, clock):
    return AppointmentStore(repos, hub, settings, clock=clock)


@pytest.fixture
def machine(repos, hub, clock):
    return AppointmentStateMachine(repos, hub, clock=clock)


@pytest.fixture
def projection(repos, hub):
    return LiveViewProjection(repos, hub)


@pytest.fixture
async def doctor_profile(directory):
    return await directory.create(
        DoctorCreate(name="Dr. Sarah Smith", specialty="Cardiology", contactEmail="sarah.smith@rajana.com")
    )


@pytest.fixture
async def other_doctor_profile(directory):
    return await directory.create(
        DoctorCreate(name="Dr. Michael Johnson", specialty="Neurology", contactEmail="michael.johnson@rajana.com")
    )


@pytest.fixture
async def admin(resolver):
    return await resolver.resolve(Principal(uid="admin-uid", email=ADMIN_EMAIL))


@pytest.fixture
async def patient(resolver):
    return await resolver.resolve(Principal(uid="patient-1", email="jane@example.com", display_name="Jane Doe"))


@pytest.fixture
async def other_patient(resolver):
    return await resolver.resolve(Principal(uid="patient-2", email="omar@example.com", display_name="Omar Ali"))


@pytest.fixture
async def doctor(resolver, doctor_profile):
    return await resolver.resolve(Principal(uid="doctor-1", email="sarah.smith@rajana.com"))


@pytest.fixture
async def other_doctor(resolver, other_doctor_profile):
    return await resolver.resolve(Principal(uid="doctor-2", email="michael.johnson@rajana.com"))


def booking(doctor_id: str, **overrides) -> AppointmentCreate:
    data = {
        "doctorId": doctor_id,
        "date": date(2024, 6, 1),
        "time": "10:00 AM",
        "reason": "checkup",
    }
    data.update(overrides)
    return AppointmentCreate(**data)


@pytest.fixture
def make_booking():
    return booking


@pytest.fixture
async def appointment(store, patient, doctor, doctor_profile):
    return await store.create(caller=patient, payload=booking(doctor_profile.doctor_id))


@pytest.fixture
def insert_appointment(repos, doctor_profile, patient, clock):
    """Store a record in any status, bypassing the state machine."""

    async def _insert(status: AppointmentStatus) -> Appointment:
        now = clock()
        return await repos.appointments.insert(
            Appointment(
                id="",
                patient_uid=patient.uid,
                patient_name=patient.display_name,
                patient_contact=patient.email,
                doctor_id=doctor_profile.doctor_id,
                doctor_name=doctor_profile.name,
                date=date(2024, 6, 1),
                time="10:00 AM",
                reason="checkup",
                status=status,
                remarks="seeded" if status == AppointmentStatus.RESCHEDULED else None,
                created_at=now,
                updated_at=now,
            )
        )

    return _insert


# -------------------- HTTP fixtures --------------------


def auth_headers(uid: str, email: str, name: str | None = None) -> dict:
    token = create_principal_token(uid=uid, email=email, name=name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def api_services(settings):
    return build_services(build_memory_repositories(), settings)


@pytest.fixture
def client(api_services):
    app = create_app(services=api_services)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    headers = auth_headers("admin-uid", ADMIN_EMAIL)
    assert client.post("/identity/resolve", headers=headers).status_code == 200
    return headers


@pytest.fixture
def doctor_id(client, admin_headers):
    resp = client.post(
        "/admin/doctors",
        headers=admin_headers,
        json={"name": "Dr. Sarah Smith", "specialty": "Cardiology", "contactEmail": "sarah.smith@rajana.com"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["doctorId"]


@pytest.fixture
def doctor_headers(client, doctor_id):
    headers = auth_headers("doctor-1", "sarah.smith@rajana.com")
    resp = client.post("/identity/resolve", headers=headers)
    assert resp.json()["role"] == "doctor"
    return headers


@pytest.fixture
def patient_headers(client):
    headers = auth_headers("patient-1", "jane@example.com", "Jane Doe")
    resp = client.post("/identity/resolve", headers=headers)
    assert resp.json()["role"] == "patient"
    return headers
