"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from triptracker.infrastructure.database import async_session_factory
from triptracker.infrastructure.notifier import RedisTripNotifier
from triptracker.infrastructure.redis_client import get_redis
from triptracker.infrastructure.repositories import TripRepository
from triptracker.services.trips import TripService


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_notifier() -> RedisTripNotifier:
    return RedisTripNotifier(await get_redis())


async def get_trip_service(
    db: AsyncSession = Depends(get_db),
    notifier: RedisTripNotifier = Depends(get_notifier),
) -> TripService:
    return TripService(TripRepository(db), notifier)


async def get_actor_id(
    x_user_id: Optional[str] = Header(None, description="Id of the calling user."),
) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
