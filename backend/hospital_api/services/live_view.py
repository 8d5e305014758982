"""
Live, role-scoped appointment views.

Writers publish every committed change to the ``LiveViewHub``. A subscriber
gets an initial snapshot plus a ``Subscription`` handle: an async iterator of
``LiveViewEvent`` that it owns and must ``cancel()`` when done.

Guarantees:
- The scope filter is fixed when the subscription is opened.
- Per appointment, events are delivered in strictly increasing ``version``
  order; anything not newer than what the subscriber already saw (snapshot
  included) is dropped.
- A failed feed ends the iteration with ``Unavailable`` instead of going quiet.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from hospital_api.constants import Role
from hospital_api.errors import Forbidden, Unavailable, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import Appointment, Identity
from hospital_api.utils.logger import get_logger

logger = get_logger("live_view")

# Marks a deleted record in the per-subscriber version map
_DELETED = float("inf")


@dataclass(frozen=True)
class ViewSpec:
    """patient:<uid> | doctor:<doctor_id> | admin"""
    kind: str
    key: Optional[str] = None

    def matches(self, ap: Appointment) -> bool:
        if self.kind == "admin":
            return True
        if self.kind == "patient":
            return ap.patient_uid == self.key
        if self.kind == "doctor":
            return ap.doctor_id == self.key
        return False

    @property
    def label(self) -> str:
        return self.kind if self.key is None else f"{self.kind}:{self.key}"


@dataclass
class LiveViewEvent:
    kind: str  # created | updated | deleted
    appointment: Appointment


class _End:
    """Queue marker that finishes a subscription, optionally with an error."""
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error


async def resolve_view(caller: Identity, scope: str, repos: Repositories) -> ViewSpec:
    """Turn a ``scope`` query value into a ViewSpec the caller may open.

    - mine: the caller's own view (patient, doctor-of-profile, or admin)
    - doctor:<id>: admins, or the doctor linked to that profile
    - patient:<uid>: admins, or that patient
    - all: admins only
    """
    scope = (scope or "mine").strip()
    if scope == "mine":
        if caller.role == Role.ADMIN:
            return ViewSpec("admin")
        if caller.role == Role.PATIENT:
            return ViewSpec("patient", caller.uid)
        profile = await repos.doctors.find_by_identity(caller.uid)
        if not profile:
            raise Forbidden("No doctor profile is linked to this account")
        return ViewSpec("doctor", profile.doctor_id)

    if scope == "all":
        if caller.role != Role.ADMIN:
            raise Forbidden("Insufficient permissions")
        return ViewSpec("admin")

    kind, sep, key = scope.partition(":")
    if not sep or not key or kind not in ("doctor", "patient"):
        raise ValidationError(f"Unknown scope: {scope}")

    if caller.role == Role.ADMIN:
        return ViewSpec(kind, key)
    if kind == "patient" and caller.role == Role.PATIENT and key == caller.uid:
        return ViewSpec(kind, key)
    if kind == "doctor" and caller.role == Role.DOCTOR:
        profile = await repos.doctors.find_by_identity(caller.uid)
        if profile and profile.doctor_id == key:
            return ViewSpec(kind, key)
    raise Forbidden("Insufficient permissions")


class Subscription:
    """Caller-owned handle over one live view."""

    def __init__(self, hub: "LiveViewHub", view: ViewSpec, max_pending: int) -> None:
        self.view = view
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue()
        self._max_pending = max_pending
        self._seen: Dict[str, float] = {}
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def seed(self, snapshot: List[Appointment]) -> None:
        for ap in snapshot:
            self._seen[ap.id] = max(self._seen.get(ap.id, 0), ap.version)

    def _offer(self, event: LiveViewEvent) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._max_pending:
            logger.warning(f"Subscriber on {self.view.label} fell behind; closing feed")
            self._end(Unavailable("Live view fell behind; resubscribe"), drain=True)
            return
        self._queue.put_nowait(event)

    def _end(self, error: Optional[Exception], *, drain: bool) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub._discard(self)
        if drain:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_End(error))

    def cancel(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if not self._closed:
            logger.debug(f"Subscription on {self.view.label} cancelled")
        self._end(None, drain=True)

    def _is_fresh(self, event: LiveViewEvent) -> bool:
        ap = event.appointment
        seen = self._seen.get(ap.id, 0)
        if event.kind == "deleted":
            if seen == _DELETED:
                return False
            self._seen[ap.id] = _DELETED
            return True
        if ap.version <= seen:
            return False
        self._seen[ap.id] = ap.version
        return True

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> LiveViewEvent:
        while True:
            if self._finished:
                raise StopAsyncIteration
            item = await self._queue.get()
            if isinstance(item, _End):
                self._finished = True
                if item.error is not None:
                    raise item.error
                raise StopAsyncIteration
            if self._is_fresh(item):
                return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.cancel()


class LiveViewHub:
    """In-process fan-out of committed appointment changes."""

    def __init__(self, max_pending: int = 1000) -> None:
        self._subscriptions: Set[Subscription] = set()
        self._max_pending = max_pending
        self._failed: Optional[Exception] = None

    def open(self, view: ViewSpec) -> Subscription:
        if self._failed is not None:
            raise Unavailable("Live view feed is not available")
        sub = Subscription(self, view, self._max_pending)
        self._subscriptions.add(sub)
        return sub

    def _discard(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, kind: str, appointment: Appointment) -> None:
        event = LiveViewEvent(kind=kind, appointment=appointment)
        for sub in list(self._subscriptions):
            if sub.view.matches(appointment):
                sub._offer(event)

    def fail(self, error: Optional[Exception] = None) -> None:
        """Terminate every subscription; pending events are delivered first."""
        self._failed = error or Unavailable("Live view feed stopped")
        for sub in list(self._subscriptions):
            sub._end(self._failed, drain=False)


class LiveViewProjection:
    def __init__(self, repos: Repositories, hub: LiveViewHub) -> None:
        self.repos = repos
        self.hub = hub

    async def subscribe(self, *, caller: Identity, scope: str) -> Tuple[List[Appointment], Subscription]:
        """Open a live view. Returns (snapshot, subscription)."""
        view = await resolve_view(caller, scope, self.repos)
        # Register before reading so no commit can fall between snapshot and feed
        sub = self.hub.open(view)
        try:
            snapshot = await self._snapshot(view)
        except Exception:
            sub.cancel()
            raise
        sub.seed(snapshot)
        logger.info(f"Live view opened: {view.label} by {caller.uid} ({len(snapshot)} records)")
        return snapshot, sub

    async def _snapshot(self, view: ViewSpec) -> List[Appointment]:
        if view.kind == "patient":
            return await self.repos.appointments.list(patient_uid=view.key)
        if view.kind == "doctor":
            return await self.repos.appointments.list(doctor_id=view.key)
        return await self.repos.appointments.list()
