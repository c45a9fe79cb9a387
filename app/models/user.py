from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    company = Column(String(255), nullable=True)
    is_activated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    otps = relationship(
        "UserOtp",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    tokens = relationship(
        "AccessToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    todos = relationship("Todo", back_populates="user")

    @property
    def display_name(self) -> str:
        return " ".join(part for part in [self.first_name, self.last_name] if part)
