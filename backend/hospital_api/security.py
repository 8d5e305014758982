import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from hospital_api.config import Settings, get_settings
from hospital_api.constants import Role
from hospital_api.errors import Unavailable
from hospital_api.schemas import Identity, Principal
from hospital_api.utils.logger import get_logger

logger = get_logger("security")

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidCredentials(Exception):
    """Token missing, malformed, expired or rejected by the provider."""


# ------------------------ Authentication providers ------------------------


class AuthProvider(ABC):
    """External identity provider: token in, stable principal out."""

    @abstractmethod
    async def verify(self, token: str) -> Principal:
        ...


class JWTAuthProvider(AuthProvider):
    """HS256 tokens signed with JWT_SECRET (development and tests)."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidCredentials("Invalid or expired token") from e
        uid = payload.get("sub")
        if not uid:
            raise InvalidCredentials("Token has no subject")
        return Principal(uid=uid, email=payload.get("email") or "", display_name=payload.get("name"))


class FirebaseAuthProvider(AuthProvider):
    """Verifies Firebase ID tokens with the Admin SDK."""

    async def verify(self, token: str) -> Principal:
        from firebase_admin import auth as firebase_auth
        from hospital_api.utils.firebase import verify_id_token

        try:
            claims = await asyncio.to_thread(verify_id_token, token)
        except firebase_auth.CertificateFetchError as e:
            logger.error(f"Firebase certificate fetch failed: {e}")
            raise Unavailable("Authentication provider is unavailable") from e
        except (firebase_auth.InvalidIdTokenError, ValueError) as e:
            raise InvalidCredentials("Invalid or expired token") from e
        return Principal(
            uid=claims["uid"],
            email=claims.get("email") or "",
            display_name=claims.get("name"),
        )


def build_auth_provider(settings: Settings) -> AuthProvider:
    if settings.AUTH_PROVIDER == "firebase":
        return FirebaseAuthProvider()
    return JWTAuthProvider(settings.JWT_SECRET, settings.JWT_ALGORITHM)


def create_principal_token(
    *, uid: str, email: str, name: str | None = None, expires_delta: Optional[timedelta] = None
) -> str:
    """Issue a dev token accepted by JWTAuthProvider (stands in for the real provider)."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    )
    to_encode = {"sub": uid, "email": email, "exp": expire}
    if name:
        to_encode["name"] = name
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


# ------------------------ FastAPI dependencies ------------------------


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def principal_from_token(services, token: str | None) -> Principal:
    """Shared by HTTP dependencies and the WebSocket stream."""
    if not token:
        raise _credentials_exception()
    try:
        return await services.auth.verify(token)
    except InvalidCredentials as e:
        raise _credentials_exception(str(e))


async def identity_from_token(services, token: str | None) -> Identity:
    principal = await principal_from_token(services, token)
    identity = await services.identities.get(principal.uid)
    if not identity:
        raise _credentials_exception("Identity not resolved; call /identity/resolve first")
    return identity


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Verify the bearer token with the configured provider."""
    token = credentials.credentials if credentials else None
    return await principal_from_token(request.app.state.services, token)


async def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Bearer token -> resolved Identity. 401 if the token is bad or the
    principal never went through /identity/resolve."""
    token = credentials.credentials if credentials else None
    return await identity_from_token(request.app.state.services, token)


# ------------------------ RBAC helpers ------------------------


def require_roles(allowed: List[Role]) -> Callable:
    """FastAPI dependency factory to enforce role-based access.
    Usage: Depends(require_roles([Role.ADMIN, Role.DOCTOR]))
    """

    async def checker(current: Identity = Depends(get_current_identity)) -> Identity:
        if current.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current

    return checker
