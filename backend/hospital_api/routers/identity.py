from typing import Optional

from fastapi import APIRouter, Body, Depends, Request

from hospital_api.config import get_settings
from hospital_api.deps import CurrentIdentity, CurrentServices
from hospital_api.rate_limit import limiter
from hospital_api.schemas import Identity, IdentityOut, IdentityUpdate, Principal, ResolveIdentityIn
from hospital_api.security import get_principal
from hospital_api.utils.logger import get_logger

logger = get_logger("identity_router")
settings = get_settings()

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post("/resolve", response_model=IdentityOut)
@limiter.limit(settings.RESOLVE_RATE_LIMIT)
async def resolve_identity(
    request: Request,
    payload: Optional[ResolveIdentityIn] = Body(None),
    principal: Principal = Depends(get_principal),
    services=CurrentServices,
):
    """Called once per login: binds the provider principal to a role.
    An optional phone is stored when the identity is first created.
    Rate limited per client IP.
    """
    phone = payload.phone if payload else None
    identity = await services.identities.resolve(principal, phone=phone)
    return IdentityOut.from_identity(identity)


@router.get("/me", response_model=IdentityOut)
async def get_me(current: Identity = CurrentIdentity):
    return IdentityOut.from_identity(current)


@router.patch("/me", response_model=IdentityOut)
async def update_me(
    payload: IdentityUpdate,
    current: Identity = CurrentIdentity,
    services=CurrentServices,
):
    """Display name and phone can be changed; role and email cannot."""
    sent = payload.model_fields_set
    identity = await services.identities.update_contact(
        current.uid,
        display_name=payload.displayName if "displayName" in sent else None,
        phone=payload.phone,
        clear_phone="phone" in sent and payload.phone is None,
    )
    return IdentityOut.from_identity(identity)
