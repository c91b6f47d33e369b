from app.models.subject import Subject

__all__ = [
    "Subject",
]
