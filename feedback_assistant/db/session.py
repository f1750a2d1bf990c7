from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from feedback_assistant.core.config import settings

url = make_url(settings.DATABASE_URL)
connect_args: dict = {}
engine_kwargs: dict = {"pool_pre_ping": True}
if url.get_backend_name().startswith("postgresql"):
    connect_args["options"] = "-c timezone=utc"
elif url.get_backend_name() == "sqlite":
    connect_args["check_same_thread"] = False
    if url.database in (None, "", ":memory:"):
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
