import logging
import random

from sqlalchemy import select

from mas_hedging.core.config import get_settings
from mas_hedging.core.database import init_db, session_scope
from mas_hedging.core.security import hash_password
from mas_hedging.models import User
from mas_hedging.services.market_feed import seed_reference_ticks

logger = logging.getLogger(__name__)


def ensure_default_admin() -> None:
    """Create the default admin account if no admin exists."""
    settings = get_settings()
    with session_scope() as session:
        existing = session.execute(select(User.id).where(User.role == "admin")).first()
        if existing:
            return
        password_hash, salt = hash_password(settings.default_admin_password)
        session.add(
            User(
                email=settings.default_admin_email,
                password_hash=password_hash,
                password_salt=salt,
                first_name="Admin",
                last_name="User",
                company="MAS Hedging",
                role="admin",
                subscription_plan="enterprise",
                is_verified=True,
            )
        )
    logger.info("Created default admin %s", settings.default_admin_email)


def bootstrap() -> None:
    init_db()
    ensure_default_admin()
    seed_reference_ticks(random.Random(get_settings().market_seed))
