"""
System User Model.
Users can sign in to the dashboard and are also paid through the salary module.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean
from sqlalchemy.sql import func
import enum
from app.database import Base


class UserRole(str, enum.Enum):
    """
    Dashboard roles.

    - ADMIN: Full access, including salary structures and debt overrides
    - MANAGER: Branch operations and payment approval
    - ACCOUNTANT: Expenses, salaries and rider credit
    - CASHIER: Point-of-sale only
    - PRODUCTION: Production logs and raw inventory
    """
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    CASHIER = "CASHIER"
    PRODUCTION = "PRODUCTION"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)

    role = Column(Enum(UserRole), default=UserRole.CASHIER, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"
