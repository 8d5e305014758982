from dataclasses import dataclass

from fastapi import Depends, Request

from hospital_api.config import Settings
from hospital_api.repositories.base import Repositories
from hospital_api.security import AuthProvider, build_auth_provider, get_current_identity
from hospital_api.services.appointment_service import AppointmentStore
from hospital_api.services.appointment_state import AppointmentStateMachine
from hospital_api.services.doctor_service import DoctorDirectory
from hospital_api.services.identity_service import IdentityResolver
from hospital_api.services.live_view import LiveViewHub, LiveViewProjection


@dataclass
class Services:
    """Everything the routers need, wired once per application."""
    settings: Settings
    repos: Repositories
    auth: AuthProvider
    hub: LiveViewHub
    identities: IdentityResolver
    doctors: DoctorDirectory
    appointments: AppointmentStore
    transitions: AppointmentStateMachine
    live_views: LiveViewProjection


def build_services(repos: Repositories, settings: Settings, auth: AuthProvider | None = None) -> Services:
    hub = LiveViewHub(max_pending=settings.LIVE_VIEW_QUEUE_SIZE)
    return Services(
        settings=settings,
        repos=repos,
        auth=auth or build_auth_provider(settings),
        hub=hub,
        identities=IdentityResolver(repos, settings),
        doctors=DoctorDirectory(repos),
        appointments=AppointmentStore(repos, hub, settings),
        transitions=AppointmentStateMachine(repos, hub),
        live_views=LiveViewProjection(repos, hub),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


# Common dependencies used across routers
CurrentServices = Depends(get_services)
CurrentIdentity = Depends(get_current_identity)
