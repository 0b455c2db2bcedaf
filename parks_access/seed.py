"""Seed the initial administrator if not present."""
import logging

from parks_access.api.deps import get_password_hash
from parks_access.config import settings
from parks_access.models.user import User
from parks_access.rbac import SystemRole

logger = logging.getLogger(__name__)


async def seed_admin():
    if not settings.seed_admin_password:
        return
    existing = await User.find_one(User.email == settings.seed_admin_email)
    if existing:
        return
    await User(
        email=settings.seed_admin_email,
        hashed_password=get_password_hash(settings.seed_admin_password),
        role=SystemRole.SUPER_ADMIN,
        full_name=settings.seed_admin_full_name,
    ).insert()
    logger.info("Created initial administrator %s", settings.seed_admin_email)
