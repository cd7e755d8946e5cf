"""Profile model.

Profiles are owned by the membership service; the accounting backend only
reads them to authorize admins and to label customers in the ledger.
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from gymledger.database import Base
from gymledger.models.base import generate_id


class Profile(Base):
    """A person with an account at a gym."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=lambda: generate_id("user"))
    gym_id = Column(String, nullable=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="member")  # "admin" | "staff" | "coach" | "member"
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
