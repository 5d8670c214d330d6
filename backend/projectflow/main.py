"""Standalone runner: wires the adapters into a DataStore and keeps a session in sync"""

import asyncio
import logging
import signal

from projectflow.config import settings
from projectflow.database import AsyncSessionLocal, close_db
from projectflow.services.auth_service import AuthSessionService
from projectflow.services.data_store import DataStore
from projectflow.services.realtime_service import RealtimeService
from projectflow.services.record_gateway import RecordGateway
from projectflow.services.redis_service import RedisService
from projectflow.services.s3_service import S3Service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_data_store() -> DataStore:
    """Build a DataStore backed by PostgreSQL, Redis and S3"""
    redis_service = RedisService()
    realtime = RealtimeService(redis_service)

    return DataStore(
        auth=AuthSessionService(redis_service),
        records=RecordGateway(AsyncSessionLocal, realtime=realtime),
        realtime=realtime,
        storage=S3Service(),
    )


async def run() -> None:
    """Sync the configured session until SIGINT / SIGTERM"""
    store = build_data_store()

    if settings.session_access_token:
        await store.auth.set_session(settings.session_access_token)
    else:
        logger.warning("SESSION_ACCESS_TOKEN not set; the store stays unauthenticated")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await store.start()
    if store.user_profile is not None:
        logger.info(
            f"Session ready as {store.user_profile.role.value} {store.user_profile.id}: "
            f"{len(store.projects)} project(s), {len(store.assistance_requests)} assistance request(s)"
        )
    if store.load_error is not None:
        logger.error(f"Initial load failed: {store.load_error}")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        await store.stop()
        await RedisService.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(run())
