from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import logging
import time

from .core.config import settings
from .core.cache import cache
from .core.database import close_db_connections
from .core.error_handlers import database_exception_handler, general_exception_handler
from .core.logging import setup_logging

from .routers import health
from .routers.school_authority import classes, enrollment, students

setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await cache.disconnect()
    await close_db_connections()
    logger.info("Shutdown complete")

app = FastAPI(
    title="EduAssist Enrollment Service",
    description="Enrollment lifecycle, class capacity, auto-assignment and grade promotion",
    version=settings.app_version,
    lifespan=lifespan
)

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(health.router)
app.include_router(students.router)
app.include_router(classes.router)
app.include_router(enrollment.router)

@app.get("/")
async def root():
    return {
        "message": "EduAssist Enrollment Service",
        "version": settings.app_version,
        "features": ["Enrollment lifecycle", "Class capacity", "Auto-assignment", "Grade promotion"],
        "status": "active"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=True)
