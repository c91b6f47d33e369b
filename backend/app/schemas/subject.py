from datetime import datetime

from pydantic import BaseModel, Field, computed_field


class SubjectBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    color: str = "#4B5563"
    outstanding_minutes: float = Field(default=0.0, ge=0)


class SubjectCreate(SubjectBase):
    pass


class SubjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    color: str | None = None
    outstanding_minutes: float | None = Field(default=None, ge=0)


class StudyTimeIncrement(BaseModel):
    """Minutes estimated by content analysis for newly uploaded material."""

    minutes: float = Field(gt=0)


class SubjectPublic(SubjectBase):
    id: str
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def total_study_time(self) -> float:
        """Name the web client reads for a subject's outstanding minutes."""
        return self.outstanding_minutes

    class Config:
        from_attributes = True
