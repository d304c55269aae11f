from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Import all models so that Base.metadata.create_all picks them up.
from app.models.artifact import Artifact  # noqa: E402, F401
from app.models.job import GenerationJob  # noqa: E402, F401
