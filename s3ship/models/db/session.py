from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from .models import Base

def get_engine(db_url: str):
    kwargs = {}
    if db_url.startswith("sqlite"):
        # runs are recorded from the CLI thread, but allow the history to be
        # shared with uploader threads as well
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(db_url, echo=False, future=True, **kwargs)

def init_db(db_url: str):
    """Create the history tables if needed and return a session factory."""
    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
