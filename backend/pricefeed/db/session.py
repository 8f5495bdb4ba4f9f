# backend/pricefeed/db/session.py

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker

from pricefeed.config.settings import settings
from pricefeed.db.models import Base

engine = create_async_engine(settings.database_url, echo=False)
AsyncSessionLocal = async_sessionmaker(autoflush=False, bind=engine, expire_on_commit=False)


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create the price tables if they do not exist yet."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
