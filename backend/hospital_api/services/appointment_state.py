"""
Appointment status transitions.

    pending   -> confirmed | rescheduled | cancelled
    confirmed -> completed | rescheduled | cancelled

rescheduled, completed and cancelled are terminal; a rescheduled visit is
rebooked as a new appointment.
"""
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from hospital_api.constants import AppointmentStatus, Role
from hospital_api.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import Appointment, Identity
from hospital_api.services.appointment_service import _utcnow, doctor_profile_for
from hospital_api.services.live_view import LiveViewHub
from hospital_api.utils.logger import get_logger

logger = get_logger("appointment_state")

S = AppointmentStatus

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.RESCHEDULED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.RESCHEDULED, S.CANCELLED}),
    S.RESCHEDULED: frozenset(),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses that can only be reached through a transition
TRANSITION_TARGETS = frozenset().union(*ALLOWED_TRANSITIONS.values())


def is_legal(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: AppointmentStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


class AppointmentStateMachine:
    def __init__(
        self,
        repos: Repositories,
        hub: LiveViewHub,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repos = repos
        self.hub = hub
        self.clock = clock

    async def _authorize(self, caller: Identity, ap: Appointment) -> None:
        if caller.role == Role.ADMIN:
            return
        if caller.role == Role.DOCTOR:
            profile = await doctor_profile_for(self.repos, caller)
            if profile and profile.doctor_id == ap.doctor_id:
                return
            raise NotFound("Appointment not found")
        if caller.role == Role.PATIENT and ap.patient_uid == caller.uid:
            raise Forbidden("Only the doctor of record or an admin can change appointment status")
        raise NotFound("Appointment not found")

    async def transition(
        self,
        *,
        caller: Identity,
        appointment_id: str,
        target: AppointmentStatus,
        remarks: Optional[str] = None,
    ) -> Appointment:
        """
        Apply one status change as a compare-and-set on the record version.
        - Re-requesting the current status is a no-op success (client retry).
        - Illegal edges raise InvalidTransition and write nothing.
        - Losing a concurrent write raises Conflict; reload and retry.
        """
        target = AppointmentStatus(target)
        ap = await self.repos.appointments.get(appointment_id)
        if not ap:
            raise NotFound("Appointment not found")
        await self._authorize(caller, ap)

        if ap.status == target and target in TRANSITION_TARGETS:
            logger.debug(f"Appointment {ap.id} already {target.value}; nothing to do")
            return ap

        if not is_legal(ap.status, target):
            raise InvalidTransition(
                f"Cannot change appointment from {ap.status.value} to {target.value}"
            )

        note = (remarks or "").strip()
        if target == S.RESCHEDULED and not note:
            raise ValidationError("Remarks are required when rescheduling")

        updated = ap.model_copy(
            update={
                "status": target,
                "remarks": note or ap.remarks,
                "updated_at": self.clock(),
                "version": ap.version + 1,
            }
        )
        if not await self.repos.appointments.compare_and_set(updated, expected_version=ap.version):
            logger.warning(f"Conflicting update on appointment {ap.id} ({ap.status.value} -> {target.value})")
            raise Conflict("Appointment was changed by someone else; reload and try again")

        self.hub.publish("updated", updated)
        logger.info(
            f"Appointment {ap.id}: {ap.status.value} -> {target.value} by {caller.role.value} {caller.uid}"
        )
        return updated
