import asyncio
import logging
from fastapi import HTTPException, status
from functools import wraps
from typing import Callable
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)

class DatabaseError(HTTPException):
    """Custom exception for database errors"""
    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

class NotFoundError(HTTPException):
    """Custom exception for not found errors"""
    def __init__(self, resource: str = "Resource"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")

class ForbiddenError(HTTPException):
    """Custom exception for forbidden errors"""
    def __init__(self, detail: str = "Not authorized to access this resource"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ValidationError(HTTPException):
    """Custom exception for validation errors"""
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class UserNotFoundError(NotFoundError):
    """No usage record exists for the user. The row is created at signup, so this is an integrity error."""
    def __init__(self, user_id: str):
        super().__init__("Usage record")
        self.user_id = user_id

class ProtocolError(HTTPException):
    """Raised for an action tag the entitlement engine does not know"""
    def __init__(self, detail: str = "Unknown action"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

class StoreUnavailableError(HTTPException):
    """Transient usage store failure. Callers may retry the whole check/act sequence."""
    def __init__(self, detail: str = "Usage store unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers={"Retry-After": "1"},
        )

def handle_database_errors(func: Callable) -> Callable:
    """Decorator to handle database errors"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            raise DatabaseError(f"Database operation failed: {str(e)}")
    return wrapper

def handle_store_errors(func: Callable) -> Callable:
    """Decorator translating connection-level database failures into StoreUnavailableError"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except (OperationalError, PoolTimeoutError, asyncio.TimeoutError, ConnectionError) as e:
            logger.warning(f"⚠️ Usage store unavailable in {func.__name__}: {e}")
            raise StoreUnavailableError()
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning(f"⚠️ Usage store connection lost in {func.__name__}: {e}")
                raise StoreUnavailableError()
            raise DatabaseError(f"Database operation failed: {str(e)}")
    return wrapper
