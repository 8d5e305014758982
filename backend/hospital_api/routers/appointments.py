import asyncio
import contextlib
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from hospital_api.constants import Role
from hospital_api.deps import CurrentIdentity, CurrentServices
from hospital_api.errors import Forbidden, Unavailable, ValidationError
from hospital_api.schemas import (
    AppointmentCreate,
    AppointmentDelta,
    AppointmentOut,
    AppointmentSnapshot,
    AppointmentTransitionIn,
    Identity,
)
from hospital_api.security import identity_from_token, require_roles
from hospital_api.utils.logger import get_logger

logger = get_logger("appointments_router")

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentOut, status_code=201)
async def book_appointment(
    payload: AppointmentCreate,
    current: Identity = Depends(require_roles([Role.PATIENT])),
    services=CurrentServices,
):
    """حجز موعد جديد (للمريض فقط). الموعد يبدأ بحالة pending."""
    ap = await services.appointments.create(caller=current, payload=payload)
    return AppointmentOut.from_appointment(ap)


@router.get("", response_model=List[AppointmentOut])
async def list_appointments(
    scope: str = Query("mine", description="mine | doctor:<id> | patient:<uid> | all"),
    current: Identity = CurrentIdentity,
    services=CurrentServices,
):
    """Newest first."""
    items = await services.appointments.list_for_scope(caller=current, scope=scope)
    return [AppointmentOut.from_appointment(ap) for ap in items]


@router.websocket("/stream")
async def stream_appointments(
    websocket: WebSocket,
    scope: str = Query("mine"),
    token: str = Query(""),
):
    """Live view: one snapshot message, then a delta per committed change.

    Close codes: 4401 bad token, 4403 scope not allowed, 4400 bad scope,
    1011 feed failed (resubscribe).
    """
    services = websocket.app.state.services
    try:
        caller = await identity_from_token(services, token)
    except HTTPException:
        await websocket.close(code=4401)
        return
    except Unavailable:
        await websocket.close(code=1011)
        return

    try:
        snapshot, subscription = await services.live_views.subscribe(caller=caller, scope=scope)
    except Forbidden:
        await websocket.close(code=4403)
        return
    except ValidationError:
        await websocket.close(code=4400)
        return
    except Unavailable:
        await websocket.close(code=1011)
        return

    await websocket.accept()

    async def _watch_disconnect():
        # The client never sends anything; a receive only returns on disconnect
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            subscription.cancel()

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        await websocket.send_json(
            AppointmentSnapshot(
                appointments=[AppointmentOut.from_appointment(ap) for ap in snapshot]
            ).model_dump(mode="json")
        )
        async for event in subscription:
            delta = AppointmentDelta(
                kind=event.kind,
                appointment=AppointmentOut.from_appointment(event.appointment),
            )
            await websocket.send_json(delta.model_dump(mode="json"))
    except Unavailable as e:
        logger.warning(f"Live view for {caller.uid} ended: {e.detail}")
        # The peer may already be gone
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await websocket.send_json({"type": "error", "code": e.code, "detail": e.detail})
            await websocket.close(code=1011)
    except (WebSocketDisconnect, RuntimeError) as e:
        # Starlette raises RuntimeError when sending on a closed socket
        logger.debug(f"Live view for {caller.uid} closed by peer: {e!r}")
    finally:
        subscription.cancel()
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await watcher


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: str,
    current: Identity = CurrentIdentity,
    services=CurrentServices,
):
    ap = await services.appointments.get(caller=current, appointment_id=appointment_id)
    return AppointmentOut.from_appointment(ap)


@router.post("/{appointment_id}/transition", response_model=AppointmentOut)
async def transition_appointment(
    appointment_id: str,
    payload: AppointmentTransitionIn,
    current: Identity = CurrentIdentity,
    services=CurrentServices,
):
    """تغيير حالة الموعد (الطبيب المعني أو المدير فقط)."""
    ap = await services.transitions.transition(
        caller=current,
        appointment_id=appointment_id,
        target=payload.targetStatus,
        remarks=payload.remarks,
    )
    return AppointmentOut.from_appointment(ap)
