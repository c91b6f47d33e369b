from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.models.subject import Subject

DEMO_SUBJECTS = [
    {
        "name": "Calculus II",
        "description": "Integration techniques and series",
        "color": "#0EA5E9",
        "outstanding_minutes": 540,
    },
    {
        "name": "Modern Literature",
        "description": "Lecture slides, weeks 1-6",
        "color": "#F97316",
        "outstanding_minutes": 180,
    },
    {
        "name": "Physics Lab",
        "description": None,
        "color": "#10B981",
        "outstanding_minutes": 75,
    },
]


def seed_demo_data(db: Session) -> list[Subject]:
    """Insert demo subjects once; returns the subjects that were created."""
    existing = {name for (name,) in db.query(Subject.name).all()}
    subjects = [
        Subject(**data) for data in DEMO_SUBJECTS if data["name"] not in existing
    ]
    if not subjects:
        return []
    db.add_all(subjects)
    db.commit()
    return subjects


if __name__ == "__main__":
    with SessionLocal() as session:
        seed_demo_data(session)
