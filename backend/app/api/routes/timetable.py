import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.session import get_db
from app.models.subject import Subject
from app.schemas.timetable import TimetableRequest, TimetableResponse
from app.services.errors import InvalidTimetableRequest
from app.services.timetable import SubjectSnapshot, generate_timetable

logger = logging.getLogger(__name__)

router = APIRouter()


def _local_today() -> date:
    """Today's date in the configured planner timezone."""
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _snapshot(subject: Subject) -> SubjectSnapshot:
    return SubjectSnapshot(
        id=subject.id,
        name=subject.name,
        color=subject.color,
        outstanding_minutes=subject.outstanding_minutes or 0.0,
    )


@router.post("/generate", response_model=TimetableResponse)
def generate_study_timetable(
    payload: TimetableRequest,
    db: Session = Depends(get_db),
) -> TimetableResponse:
    """Generate a study timetable for the selected subjects.

    Only the requested subjects are loaded; ids missing from the store are
    rejected by the generator.
    """
    subjects = (
        db.query(Subject).filter(Subject.id.in_(payload.subject_ids)).all()
        if payload.subject_ids
        else []
    )
    try:
        return generate_timetable(
            [_snapshot(subject) for subject in subjects],
            payload,
            reference=_local_today(),
        )
    except InvalidTimetableRequest as exc:
        logger.info("Rejected timetable request: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
