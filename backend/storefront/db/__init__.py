import importlib
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.config import settings

log = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # sessions are used from the scheduler thread and from worker threads
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# every module that declares tables; imported before create_all so metadata is complete
MODEL_MODULES = [
    "storefront.models.product",
    "storefront.models.inventory",
    "storefront.models.coupon",
    "storefront.models.order",
    "storefront.models.order_event",
    "storefront.models.idempotency",
]


def init_db(reset: bool = False):
    """
    Initialize DB schema.

    Behavior:
      - If `reset` is true or the RESET_DB env var is set to 1/true/yes, drop & recreate tables.
      - Otherwise, leave existing tables in place and create the missing ones.
    """
    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")

    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset or env_reset:
        log.info("Resetting database schema")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    log.info("Database initialized (%d tables)", len(Base.metadata.tables))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
