from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from chainweave_server.core.config import settings


def make_engine(url: str, *, pool_size: int = 5, echo: bool = False) -> Engine:
    if url.startswith('sqlite'):
        engine = create_engine(
            url,
            echo=echo,
            future=True,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )

        @event.listens_for(engine, 'connect')
        def _sqlite_pragmas(dbapi_conn, _record):  # pragma: no cover - driver hook
            cur = dbapi_conn.cursor()
            cur.execute('PRAGMA journal_mode=WAL')
            cur.execute('PRAGMA foreign_keys=ON')
            cur.close()

        return engine
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=pool_size,
        echo=echo,
        future=True,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(settings.database_url, pool_size=settings.db_pool_size, echo=settings.db_echo)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass
