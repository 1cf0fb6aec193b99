from typing import Optional

from fastapi import Depends, Header, Request

from eventhub.config import Settings
from eventhub.database.dynamodb import DynamoStorage, get_db_connection
from eventhub.database.port import StoragePort
from eventhub.database.sql import SqlStorage
from eventhub.errors import Unauthenticated
from eventhub.schemas.user import Principal


def build_storage(settings: Settings) -> StoragePort:
    """Pick the storage adapter named by STORAGE_BACKEND (not yet opened)"""
    if settings.STORAGE_BACKEND == "sql":
        return SqlStorage(settings.DATABASE_URL, timeout=settings.STORAGE_TIMEOUT_SECONDS)
    if settings.STORAGE_BACKEND == "dynamodb":
        resource = get_db_connection(
            settings.DYNAMODB_ENDPOINT_URL,
            region_name=settings.AWS_DEFAULT_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )
        return DynamoStorage(resource, settings.DYNAMODB_TABLE)
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")


def get_storage(request: Request) -> StoragePort:
    """Dependency to get the storage opened by the app lifespan"""
    return request.app.state.storage


def get_principal(
    x_user_id: Optional[str] = Header(None),
    storage: StoragePort = Depends(get_storage),
) -> Optional[Principal]:
    """Caller identity forwarded by the auth gateway, or None when anonymous"""
    if not x_user_id:
        return None
    user = storage.get_user(x_user_id)
    if user is None:
        return None
    return Principal(userId=user.id, name=user.name, email=user.email)


def require_principal(
    principal: Optional[Principal] = Depends(get_principal),
) -> Principal:
    if principal is None:
        raise Unauthenticated()
    return principal
