from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fileshare.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    files = relationship("SharedFile", back_populates="owner", passive_deletes=True)

    @property
    def display_name(self) -> str:
        if self.name and self.name.strip():
            return self.name.strip()
        return (self.email or "").split("@", 1)[0]
