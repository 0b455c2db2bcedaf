"""MongoDB connection and Beanie document registration."""
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from parks_access.config import settings
from parks_access.models import PermissionAuditEntry, RolePermissions, User


_client = None


async def db_startup():
    """Connect to MongoDB and initialize Beanie ODM."""
    global _client
    _client = AsyncIOMotorClient(settings.mongodb_url, serverSelectionTimeoutMS=settings.mongodb_timeout_ms)
    await init_beanie(
        database=_client[settings.mongodb_db_name],
        document_models=[
            User,
            RolePermissions,
            PermissionAuditEntry,
        ],
    )


async def db_shutdown():
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        _client = None


async def init_db():
    """Alias for db_startup."""
    await db_startup()
