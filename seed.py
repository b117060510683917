import logging

from pymongo.database import Database

from config import Settings
from database import USERS, utcnow
from schemas import User, normalize_email
from security import hash_password

logger = logging.getLogger(__name__)


def seed_admin(db: Database, settings: Settings) -> bool:
    """Create the configured admin account once. Returns True if a user was inserted."""
    if not settings.admin_seed_configured:
        logger.info("ADMIN_NAME/ADMIN_EMAIL/ADMIN_PASSWORD not set; skipping admin seed")
        return False

    email = normalize_email(settings.ADMIN_EMAIL)
    if db[USERS].find_one({"email": email}, {"_id": 1}):
        logger.info("Admin %s already present", email)
        return False

    now = utcnow()
    admin = User(
        name=settings.ADMIN_NAME,
        email=email,
        password_hash=hash_password(settings.ADMIN_PASSWORD.get_secret_value()),
        role="admin",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db[USERS].insert_one(admin.to_mongo())
    logger.info("Seeded admin account %s", email)
    return True
