from collections.abc import AsyncGenerator, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatcore.config import settings

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

AFTER_COMMIT = "after_commit"


def call_after_commit(session: AsyncSession, callback: Callable[[], Awaitable]) -> None:
    """Run ``callback`` once the request's transaction commits. Dropped on rollback."""
    session.info.setdefault(AFTER_COMMIT, []).append(callback)


def make_get_db(session_factory: async_sessionmaker):
    async def get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                session.info.pop(AFTER_COMMIT, None)
                await session.rollback()
                raise
            for callback in session.info.pop(AFTER_COMMIT, []):
                await callback()

    return get_db


get_db = make_get_db(async_session)
