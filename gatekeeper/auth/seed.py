from __future__ import annotations

import logging
import os

from sqlalchemy import select

from .core import ADMIN_ROLE, generate_api_key, hash_password
from ..config import settings
from ..database import db_session
from ..models import User

logger = logging.getLogger("gatekeeper.auth.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create the first admin account when the user table is empty.

    Credentials come from the environment so they can be set per deployment:
      GATEKEEPER_ADMIN_USERNAME = admin
      GATEKEEPER_ADMIN_PASSWORD = changeme   (refused outside development)
      GATEKEEPER_ADMIN_NAME     = Marketplace Admin
    """
    username = os.getenv("GATEKEEPER_ADMIN_USERNAME", "admin")
    password = os.getenv("GATEKEEPER_ADMIN_PASSWORD", _DEFAULT_PASSWORD)
    name = os.getenv("GATEKEEPER_ADMIN_NAME", "Marketplace Admin")

    with db_session() as session:
        if session.execute(select(User).limit(1)).scalar_one_or_none():
            return

        if password == _DEFAULT_PASSWORD:
            if settings.environment != "development":
                logger.error(
                    "Refusing to seed admin with the default password in %s; "
                    "set GATEKEEPER_ADMIN_PASSWORD",
                    settings.environment,
                )
                return
            logger.warning("Seeding admin with the default password; set GATEKEEPER_ADMIN_PASSWORD before deploying")

        session.add(
            User(
                username=username,
                name=name,
                password_hash=hash_password(password),
                role=ADMIN_ROLE,
                api_key=generate_api_key(),
                is_active=True,
            )
        )
        logger.info("Default admin created: %s", username)
