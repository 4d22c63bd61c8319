"""User model definitions."""

from sqlalchemy import Column, Integer, String
from classroom.database import Base


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String)
    sso_provider = Column(String)
    sso_subject = Column(String, index=True)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
