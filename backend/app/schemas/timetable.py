from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

SessionType = Literal["deep_focus", "review", "quick_recap"]


class TimetableRequest(BaseModel):
    subject_ids: list[str]
    hours_per_day: float = 4
    preferred_blocks: list[str] = Field(default_factory=list)
    # Kept as a string so unparseable dates are rejected by the engine
    exam_date: str | None = None
    days_count: int = 7


class TimetableSession(BaseModel):
    id: str
    subject_id: str
    subject_name: str
    subject_color: str
    title: str
    duration_minutes: int
    start_time: str
    day_index: int
    session_type: SessionType
    block: str
    date: date
    day: str


class TimetableResponse(BaseModel):
    sessions: list[TimetableSession]
    total_hours: float
    days: int
    subjects_covered: int
    allocated_minutes: int = 0
    unplaced_minutes: int = 0
