from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from atendimentos.core import config


def _connect_args(database_url: str) -> dict:
    # Store reads run in the thread pool, away from the thread that opened the connection.
    if database_url.startswith('sqlite'):
        return {'check_same_thread': False}
    return {}


engine = create_engine(config.DATABASE_URL, connect_args=_connect_args(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()
