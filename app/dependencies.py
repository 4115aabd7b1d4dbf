"""Request-scoped dependencies backed by resources owned by the app lifespan."""

from collections.abc import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.client_info import GeoLocator


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a DB session; commit on success, roll back on any error."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_geolocator(request: Request) -> GeoLocator:
    return request.app.state.geolocator
