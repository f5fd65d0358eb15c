from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

from .exceptions import DatabaseError

logger = logging.getLogger(__name__)


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle persistence failures that escaped the services"""
    logger.error(f"Database error: {exc} - Path: {request.url.path}")
    error = DatabaseError("Persistence layer unavailable")
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(f"Unexpected error: {str(exc)} - Path: {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": {"error": "Internal server error", "type": type(exc).__name__}}
    )
