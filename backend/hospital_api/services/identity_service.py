import re
from datetime import datetime, timezone
from typing import Optional

from hospital_api.config import Settings
from hospital_api.constants import Role
from hospital_api.errors import DuplicateRecord, NotFound, Unavailable, ValidationError
from hospital_api.repositories.base import Repositories
from hospital_api.schemas import DoctorProfile, Identity, Principal
from hospital_api.utils.logger import get_logger

logger = get_logger("identity_service")


class IdentityResolver:
    """Binds an authenticated principal to exactly one role and profile.

    Resolution order, first match wins:
    1. an identity already stored for the uid is returned with its role
       unchanged; a stored doctor whose profile was deleted and re-created is
       linked to the new profile;
    2. the reserved admin address becomes admin;
    3. a doctor profile with the same contact email makes a doctor and is
       linked to the uid (first writer wins);
    4. the doctor email convention makes a profile-less doctor, only when
       ``DOCTOR_EMAIL_HEURISTIC_ENABLED`` is set;
    5. everyone else is a patient.

    The identity is persisted before it is returned. Storage errors propagate
    so that no role is ever handed out without a stored record.
    """

    def __init__(self, repos: Repositories, settings: Settings) -> None:
        self.repos = repos
        self.settings = settings

    async def resolve(self, principal: Principal, phone: Optional[str] = None) -> Identity:
        """``phone`` is a signup detail; it is ignored once the identity exists."""
        existing = await self.repos.identities.get(principal.uid)
        if existing:
            if existing.role == Role.DOCTOR:
                await self._relink(existing)
            return existing

        email = (principal.email or "").strip().lower()
        identity = await self._first_sight(principal, email, phone)
        try:
            stored = await self.repos.identities.insert(identity)
        except DuplicateRecord:
            # Another session resolved the same uid first
            stored = await self.repos.identities.get(principal.uid)
            if stored is None:
                raise Unavailable("Identity could not be persisted")
            return stored

        logger.info(f"New identity {stored.uid} ({email or 'no email'}) resolved as {stored.role.value}")
        return stored

    async def _first_sight(self, principal: Principal, email: str, phone: Optional[str]) -> Identity:
        now = datetime.now(timezone.utc)
        default_name = principal.display_name or (email.split("@")[0] if email else "User")

        if email and email == self.settings.ADMIN_EMAIL.strip().lower():
            return Identity(
                uid=principal.uid,
                email=email,
                display_name=principal.display_name or "Admin",
                role=Role.ADMIN,
                created_at=now,
            )

        if email:
            profile = await self.repos.doctors.find_by_email(email)
            if profile and await self._link(profile, principal.uid):
                return Identity(
                    uid=principal.uid,
                    email=email,
                    display_name=profile.name,
                    role=Role.DOCTOR,
                    phone=profile.phone or phone,
                    created_at=now,
                )

        if email and self._matches_doctor_convention(email):
            logger.warning(
                f"Granting doctor role to {email} by email convention only; "
                f"no doctor profile exists for this account"
            )
            return Identity(
                uid=principal.uid,
                email=email,
                display_name=default_name,
                role=Role.DOCTOR,
                phone=phone,
                created_at=now,
            )

        return Identity(
            uid=principal.uid,
            email=email,
            display_name=default_name,
            role=Role.PATIENT,
            phone=phone,
            created_at=now,
        )

    async def _link(self, profile: DoctorProfile, uid: str) -> bool:
        if profile.identity_uid == uid:
            return True
        if profile.identity_uid is None and await self.repos.doctors.link_identity(profile.doctor_id, uid):
            logger.info(f"Linked doctor profile {profile.doctor_id} to identity {uid}")
            return True
        logger.warning(
            f"Doctor profile {profile.doctor_id} is already linked to another identity; "
            f"not linking {uid}"
        )
        return False

    async def _relink(self, identity: Identity) -> None:
        if await self.repos.doctors.find_by_identity(identity.uid):
            return
        profile = await self.repos.doctors.find_by_email(identity.email)
        if profile:
            await self._link(profile, identity.uid)

    def _matches_doctor_convention(self, email: str) -> bool:
        if not self.settings.DOCTOR_EMAIL_HEURISTIC_ENABLED:
            return False
        return re.match(self.settings.DOCTOR_EMAIL_PATTERN, email) is not None

    async def get(self, uid: str) -> Optional[Identity]:
        return await self.repos.identities.get(uid)

    async def update_contact(
        self,
        uid: str,
        *,
        display_name: Optional[str] = None,
        phone: Optional[str] = None,
        clear_phone: bool = False,
    ) -> Identity:
        """Change contact details. Role, uid and email never change."""
        fields = {}
        if display_name is not None:
            name = display_name.strip()
            if not name:
                raise ValidationError("displayName must not be empty")
            fields["display_name"] = name
        if phone is not None or clear_phone:
            fields["phone"] = phone
        identity = await self.repos.identities.update(uid, fields)
        if not identity:
            raise NotFound("Identity not found")
        if fields:
            logger.info(f"Identity {uid} updated: {', '.join(sorted(fields))}")
        return identity

    async def update_display_name(self, uid: str, display_name: str) -> Identity:
        return await self.update_contact(uid, display_name=display_name)
