from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.subject import Subject
from app.schemas.subject import (
    StudyTimeIncrement,
    SubjectCreate,
    SubjectPublic,
    SubjectUpdate,
)

router = APIRouter()


def _get_subject_or_404(db: Session, subject_id: str) -> Subject:
    subject = db.query(Subject).filter(Subject.id == subject_id).first()
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Subject not found"
        )
    return subject


@router.get("/", response_model=list[SubjectPublic])
def list_subjects(db: Session = Depends(get_db)) -> list[SubjectPublic]:
    return db.query(Subject).order_by(Subject.created_at, Subject.name).all()


@router.post("/", response_model=SubjectPublic, status_code=status.HTTP_201_CREATED)
def create_subject(
    payload: SubjectCreate,
    db: Session = Depends(get_db),
) -> SubjectPublic:
    subject = Subject(**payload.model_dump())
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


@router.get("/{subject_id}", response_model=SubjectPublic)
def get_subject(subject_id: str, db: Session = Depends(get_db)) -> SubjectPublic:
    return _get_subject_or_404(db, subject_id)


@router.put("/{subject_id}", response_model=SubjectPublic)
def update_subject(
    subject_id: str,
    payload: SubjectUpdate,
    db: Session = Depends(get_db),
) -> SubjectPublic:
    subject = _get_subject_or_404(db, subject_id)
    data = payload.model_dump(exclude_unset=True)
    for key, value in data.items():
        setattr(subject, key, value)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


@router.post("/{subject_id}/study-time", response_model=SubjectPublic)
def add_study_time(
    subject_id: str,
    payload: StudyTimeIncrement,
    db: Session = Depends(get_db),
) -> SubjectPublic:
    """Accumulate study minutes estimated for newly analyzed material."""
    subject = _get_subject_or_404(db, subject_id)
    subject.outstanding_minutes = (subject.outstanding_minutes or 0.0) + payload.minutes
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


@router.delete("/{subject_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subject(subject_id: str, db: Session = Depends(get_db)) -> None:
    subject = _get_subject_or_404(db, subject_id)
    db.delete(subject)
    db.commit()
