from hospital_api.config import Settings, get_settings
from hospital_api.repositories.base import Repositories
from hospital_api.repositories.memory import build_memory_repositories

_mongo_client = None


async def init_db(settings: Settings | None = None) -> Repositories:
    """Initialize the configured storage backend and return its repositories."""
    global _mongo_client
    settings = settings or get_settings()
    if settings.STORAGE_BACKEND == "memory":
        return build_memory_repositories()

    from motor.motor_asyncio import AsyncIOMotorClient
    from beanie import init_beanie
    from hospital_api.models import IdentityDoc, DoctorDoc, AppointmentDoc
    from hospital_api.repositories.mongo import (
        MongoAppointmentRepository,
        MongoDoctorRepository,
        MongoIdentityRepository,
    )

    _mongo_client = AsyncIOMotorClient(settings.MONGODB_URI)
    # Extract database name from URI, default to 'hospital_db' if not specified
    db_name = settings.MONGODB_URI.rsplit("/", 1)[-1].split("?")[0]
    if not db_name:
        db_name = "hospital_db"
    await init_beanie(
        database=_mongo_client[db_name],
        document_models=[IdentityDoc, DoctorDoc, AppointmentDoc],
    )
    return Repositories(
        identities=MongoIdentityRepository(),
        doctors=MongoDoctorRepository(),
        appointments=MongoAppointmentRepository(),
    )


def close_db() -> None:
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
