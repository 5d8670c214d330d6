"""Services package"""

from .s3_service import S3Service
from .redis_service import RedisService
from .realtime_service import RealtimeService
from .auth_service import AuthSessionService
from .record_gateway import RecordGateway
from .data_store import DataStore

__all__ = [
    "S3Service",
    "RedisService",
    "RealtimeService",
    "AuthSessionService",
    "RecordGateway",
    "DataStore",
]
