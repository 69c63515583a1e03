from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
import enum
from app.database import Base


class StaffKind(str, enum.Enum):
    """
    The two parallel staff tables.

    Every salary, loan, payment and debt row is keyed by (staff_kind, staff_id).
    """
    USER = "user"
    STAFF_MEMBER = "staff_member"


class StaffMember(Base):
    """Non-user staff: bakers, riders, cleaners and other workers without a login."""
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    role = Column(String, nullable=False, index=True)  # e.g. "baker", "rider"
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<StaffMember {self.full_name} ({self.role})>"
