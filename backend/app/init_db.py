from app.db.session import engine
from app.models import subject  # noqa: F401
from app.db.base import Base

Base.metadata.create_all(bind=engine)
print("Database tables created!")
