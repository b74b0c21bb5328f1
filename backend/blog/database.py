"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL`. Development and tests run on a local SQLite
file; deployments point the URL at MariaDB (`mariadb+pymysql://`) or
PostgreSQL (`postgresql+psycopg://`) without code changes.
"""

import logging

from sqlmodel import SQLModel, create_engine, Session

from .config import settings

logger = logging.getLogger("blog.database")


def _make_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, pool_pre_ping=True)


engine = _make_engine(settings.DATABASE_URL)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    deployments; schema changes on a long-lived database should go
    through a proper migration tool (alembic) instead.
    """
    from . import models  # noqa: F401  registers the table classes

    SQLModel.metadata.create_all(engine)
    _seed_admin()


def _seed_admin():
    """Create the configured admin account if it does not exist yet."""
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return
    from . import models, repositories
    from .services import PWD_CTX

    # stored the way signup and login normalise emails
    email = settings.ADMIN_EMAIL.strip().lower()
    with Session(engine) as session:
        users = repositories.UserRepository(session)
        if users.get_by_email(email):
            return
        admin = models.User(
            email=email,
            password_hash=PWD_CTX.hash(settings.ADMIN_PASSWORD),
            name=settings.ADMIN_NICKNAME,
            nickname=settings.ADMIN_NICKNAME,
            role=models.UserRole.ADMIN,
        )
        users.create(admin)
        logger.info("seeded admin account email=%s", email)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
