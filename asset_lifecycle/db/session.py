import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _engine_kwargs(db_url: str) -> dict:
    kwargs = {"pool_pre_ping": True, "future": True}
    if db_url.startswith("sqlite"):
        # SQLite waits on the database lock instead of on a row lock.
        lock_timeout = float(os.environ.get("ASSET_LIFECYCLE_LOCK_TIMEOUT_SECONDS") or "10")
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": lock_timeout}
    return kwargs


ASSET_LIFECYCLE_DB_URL = _require_env("ASSET_LIFECYCLE_DB_URL")

engine_asset = create_engine(ASSET_LIFECYCLE_DB_URL, **_engine_kwargs(ASSET_LIFECYCLE_DB_URL))

SessionLocalAsset = sessionmaker(
    bind=engine_asset,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
