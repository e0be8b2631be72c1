from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=True)  # admin, reception, staff, cashier, appointments_only
    # Owner account for employees; NULL means the user owns its own data
    tenant_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # Staff member this login acts as (only meaningful for the staff role)
    staff_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    business_config = relationship(
        "BusinessConfig",
        back_populates="user",
        uselist=False,
        foreign_keys="BusinessConfig.user_id",
    )

    @property
    def owner_id(self) -> int:
        """Account id that scopes every business row this user can see"""
        return self.tenant_id or self.id


class BusinessConfig(Base):
    __tablename__ = "business_configs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String(255), nullable=True)
    # [{"day": 0-6, "start": "HH:MM", "end": "HH:MM"}], day 0 is Sunday
    opening_hours = Column(JSON, default=list, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="business_config", foreign_keys=[user_id])


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    # Same slot format as BusinessConfig.opening_hours; empty means no restriction
    working_hours = Column(JSON, default=list, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Resource(Base):
    """Capacity-limited bookable thing: a chair, a room, a machine"""

    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    price = Column(Float, default=0)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=True)
    # Staff ids allowed to perform the service; empty means everybody
    enabled_staff_ids = Column(JSON, default=list, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    resource = relationship("Resource")


class AppointmentGroup(Base):
    """Several simultaneous services booked together for one client"""

    __tablename__ = "appointment_groups"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    starts_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    appointments = relationship("Appointment", back_populates="group")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    group_id = Column(Integer, ForeignKey("appointment_groups.id"), nullable=True)

    # Booked service/staff and what was actually performed
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    final_service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False, index=True)
    final_staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=True)
    final_staff_first_name = Column(String(255), nullable=True)
    final_staff_last_name = Column(String(255), nullable=True)

    # Naive UTC
    starts_at = Column(DateTime, nullable=False, index=True)
    ends_at = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(50), default="pending", nullable=False)  # pending, in_progress, completed, cancelled
    confirmation_status = Column(String(50), nullable=True)  # pending, confirmed, cancelled
    confirmed_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by_username = Column(String(150), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client")
    service = relationship("Service", foreign_keys=[service_id])
    final_service = relationship("Service", foreign_keys=[final_service_id])
    staff = relationship("StaffMember", foreign_keys=[staff_id])
    group = relationship("AppointmentGroup", back_populates="appointments")
    confirmation_tokens = relationship(
        "ConfirmationToken", back_populates="appointment", cascade="all, delete-orphan"
    )


class ConfirmationToken(Base):
    """Single-use link a client answers to confirm or cancel an appointment"""

    __tablename__ = "confirmation_tokens"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    token = Column(String(64), unique=True, index=True, nullable=False)
    status = Column(String(50), default="pending", nullable=False)  # pending, confirmed, cancelled, expired
    expires_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment", back_populates="confirmation_tokens")
