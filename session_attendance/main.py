"""Session attendance service - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ServerSelectionTimeoutError

from session_attendance.api import attendance
from session_attendance.api.deps import get_current_actor
from session_attendance.config import settings
from session_attendance.db import db_shutdown, init_db
from session_attendance.errors import AttendanceError, AttendanceValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except ServerSelectionTimeoutError as e:
        logger.error(f"MongoDB is not reachable at {settings.mongodb_url}")
        raise RuntimeError("MongoDB connection failed. Check MONGODB_URL.") from e
    yield
    await db_shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Session attendance marking, finalize/lock workflow and analytics",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(errors)},
    )


@app.exception_handler(AttendanceError)
async def attendance_exception_handler(request: Request, exc: AttendanceError):
    content = {"detail": exc.message}
    if isinstance(exc, AttendanceValidationError) and exc.errors:
        content["errors"] = jsonable_encoder(exc.errors)
    return JSONResponse(status_code=exc.status_code, content=content)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(
    attendance.router,
    prefix="/api/attendance",
    tags=["Attendance"],
    dependencies=[Depends(get_current_actor)],
)


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name}
