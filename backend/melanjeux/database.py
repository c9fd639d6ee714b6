from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; row-lock waits are bounded on MySQL so a stuck slot surfaces as an error."""
    connect_args: dict[str, Any] = {}
    if make_url(settings.database_url).get_backend_name() == "mysql":
        connect_args["init_command"] = (
            f"SET SESSION innodb_lock_wait_timeout = {settings.lock_wait_timeout_seconds}"
        )
    return create_async_engine(
        settings.database_url,
        echo=settings.echo_sql,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args=connect_args,
    )


engine = build_engine(get_settings())

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
