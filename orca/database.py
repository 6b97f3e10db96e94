from sqlmodel import SQLModel, create_engine
from sqlalchemy.pool import StaticPool
from orca.config import DATABASE_URL, SQL_ECHO


def make_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO):
    # SQLite connections are shared with the threadpool that drives streamed bodies
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = make_engine()

def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind if bind is not None else engine)
