from fastapi import APIRouter

from app.api.routes import (
    health,
    subjects,
    timetable,
)


api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(subjects.router, prefix="/subjects", tags=["subjects"])
api_router.include_router(timetable.router, prefix="/timetable", tags=["timetable"])
