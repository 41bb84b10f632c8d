from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(database_url, future=True, echo=echo)
    if engine.dialect.name == 'sqlite':
        # sqlite ignores ON DELETE CASCADE unless asked per connection
        @event.listens_for(engine.sync_engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()
    return engine


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Import models to register tables
from .users import User  # noqa: F401,E402
from .stories import Story  # noqa: F401,E402
from .photos import Photo  # noqa: F401,E402
