from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    # naive UTC: SQLite en Postgres (timestamp without time zone) gedragen zich gelijk
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(database_url: str, **kwargs):
    connect_args = kwargs.pop("connect_args", {})
    if database_url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)  # nodig voor SQLite met FastAPI threads
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def insert_ignore(db: Session, model, **values) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING; True als er een rij is aangemaakt."""
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    else:
        try:
            with db.begin_nested():
                db.add(model(**values))
        except IntegrityError:
            return False
        return True
    return db.execute(stmt).rowcount == 1
