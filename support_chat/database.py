from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from support_chat.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def init_db(bind=None) -> None:
    """Create tables that do not exist yet."""
    import support_chat.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
