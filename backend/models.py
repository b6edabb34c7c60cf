from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Ticket(Base):
    __tablename__ = "tickets"

    id: int = Column(Integer, primary_key=True, index=True)
    ticket_no: str = Column(String, unique=True, nullable=False, index=True)  # e.g., M-0001
    truck_no: Optional[str] = Column(String, index=True)
    driver: Optional[str] = Column(String)
    consignee: Optional[str] = Column(String)
    operation: Optional[str] = Column(String)
    container_no: Optional[str] = Column(String)
    sad_no: Optional[str] = Column(String, index=True)
    gross: Optional[float] = Column(Float)
    tare: Optional[float] = Column(Float)
    net: Optional[float] = Column(Float)
    status: str = Column(String, default="Pending", nullable=False)  # Pending, Exited
    manual: bool = Column(Boolean, default=False)
    flagged: bool = Column(Boolean, default=False)
    scale_name: Optional[str] = Column(String, default="WBRIDGE1")
    operator_id: Optional[int] = Column(Integer)
    file_url: Optional[str] = Column(String)
    file_name: Optional[str] = Column(String)
    date: datetime = Column(DateTime, default=datetime.utcnow)
    submitted_at: datetime = Column(DateTime, default=datetime.utcnow)

    outgate = relationship("Outgate", back_populates="ticket", uselist=False)


class SadDeclaration(Base):
    __tablename__ = "sad_declarations"

    id: int = Column(Integer, primary_key=True, index=True)
    sad_no: str = Column(String, unique=True, nullable=False, index=True)
    regime: Optional[str] = Column(String)  # IM4, EX1, IM7
    declared_weight: float = Column(Float, nullable=False, default=0.0)
    total_recorded_weight: float = Column(Float, default=0.0)
    status: str = Column(String, default="In Progress", nullable=False)
    docs: list = Column(JSON, default=list)
    manual_update: bool = Column(Boolean, default=False)
    created_by: Optional[int] = Column(Integer)
    completed_by: Optional[int] = Column(Integer)
    completed_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Outgate(Base):
    __tablename__ = "outgate"

    id: int = Column(Integer, primary_key=True, index=True)
    ticket_id: int = Column(Integer, ForeignKey("tickets.id"), unique=True, nullable=False)
    ticket_no: Optional[str] = Column(String)
    vehicle_number: Optional[str] = Column(String, index=True)
    container_id: Optional[str] = Column(String)
    sad_no: Optional[str] = Column(String, index=True)
    driver: Optional[str] = Column(String)
    gross: Optional[float] = Column(Float)
    tare: Optional[float] = Column(Float)
    net: Optional[float] = Column(Float)
    date: Optional[datetime] = Column(DateTime)  # entry date copied from the ticket
    file_url: Optional[str] = Column(String)
    file_name: Optional[str] = Column(String)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)  # exit time

    ticket = relationship("Ticket", back_populates="outgate")


class Driver(Base):
    __tablename__ = "drivers"

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String, nullable=False)
    phone: str = Column(String, unique=True, nullable=False)
    license_number: Optional[str] = Column(String, unique=True)
    picture_url: Optional[str] = Column(String)
    is_suspended: bool = Column(Boolean, default=False)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    full_name: str = Column(String, nullable=False)
    email: str = Column(String, unique=True, nullable=False)
    username: str = Column(String, unique=True, nullable=False)
    role: str = Column(String, nullable=False)  # admin, weighbridge, outgate, customs, agent
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    preferences = relationship("UserPreference", back_populates="user", cascade="all, delete-orphan")


class UserPreference(Base):
    __tablename__ = "user_preferences"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_user_preference_key"),)

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)
    key: str = Column(String, nullable=False)
    value: str = Column(String, nullable=False)

    user = relationship("User", back_populates="preferences")


class VehicleTare(Base):
    __tablename__ = "vehicle_tares"

    id: int = Column(Integer, primary_key=True, index=True)
    truck_no: str = Column(String, unique=True, nullable=False)
    tare: float = Column(Float, nullable=False)
    avg_tare: float = Column(Float, nullable=False)
    entry_count: int = Column(Integer, default=0)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow)


class VehicleTareHistory(Base):
    __tablename__ = "vehicle_tare_history"

    id: int = Column(Integer, primary_key=True, index=True)
    truck_no: str = Column(String, nullable=False, index=True)
    tare: float = Column(Float, nullable=False)
    recorded_at: datetime = Column(DateTime, default=datetime.utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("ticket_id", "role", "message", name="uq_notification_event"),)

    id: int = Column(Integer, primary_key=True, index=True)
    ticket_id: Optional[int] = Column(Integer, index=True)
    role: str = Column(String, nullable=False, index=True)
    message: str = Column(String, nullable=False)
    level: str = Column(String, default="info")  # info, warning, critical
    meta: Optional[dict] = Column(JSON)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    reads = relationship("NotificationRead", back_populates="notification", cascade="all, delete-orphan")


class NotificationRead(Base):
    __tablename__ = "notification_reads"
    __table_args__ = (UniqueConstraint("notification_id", "user_id", name="uq_notification_read"),)

    id: int = Column(Integer, primary_key=True, index=True)
    notification_id: int = Column(Integer, ForeignKey("notifications.id"), nullable=False)
    user_id: int = Column(Integer, nullable=False)
    is_read: bool = Column(Boolean, default=False)
    dismissed: bool = Column(Boolean, default=False)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    notification = relationship("Notification", back_populates="reads")


class SadActivity(Base):
    __tablename__ = "sad_activity"

    id: int = Column(Integer, primary_key=True, index=True)
    text: str = Column(String, nullable=False)
    meta: Optional[dict] = Column(JSON)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class PendingDeletion(Base):
    __tablename__ = "pending_deletions"

    id: int = Column(Integer, primary_key=True, index=True)
    resource: str = Column(String, nullable=False)  # tickets, drivers
    resource_id: int = Column(Integer, nullable=False)
    snapshot: Optional[dict] = Column(JSON)
    requested_by: Optional[int] = Column(Integer)
    execute_after: datetime = Column(DateTime, nullable=False)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class Appointment(Base):
    __tablename__ = "appointments"

    id: int = Column(Integer, primary_key=True, index=True)
    appointment_number: str = Column(String, unique=True, nullable=False, index=True)  # YYMMDD + 4-digit seq
    weighbridge_number: str = Column(String, unique=True, nullable=False, index=True)  # WB + YYMM + 5-digit seq
    agent_tin: str = Column(String, nullable=False)
    agent_name: str = Column(String, nullable=False)
    warehouse_location: str = Column(String, nullable=False)
    pickup_date: date = Column(Date, nullable=False, index=True)
    consolidated: str = Column(String, default="N")  # Y, N
    truck_number: str = Column(String, nullable=False, index=True)
    driver_name: str = Column(String, nullable=False)
    driver_license_no: str = Column(String, nullable=False)
    total_t1s: int = Column(Integer, default=0)
    total_documented_weight: Optional[float] = Column(Float)
    regime: Optional[str] = Column(String)
    status: str = Column(String, default="Posted", nullable=False)  # Posted, Completed
    created_by: Optional[int] = Column(Integer)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    t1_records = relationship(
        "T1Record",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="T1Record.id",
    )


class T1Record(Base):
    __tablename__ = "t1_records"

    id: int = Column(Integer, primary_key=True, index=True)
    appointment_id: int = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    sad_no: str = Column(String, nullable=False, index=True)
    packing_type: str = Column(String, nullable=False)  # container, bulk, loose cargo
    container_no: Optional[str] = Column(String)

    appointment = relationship("Appointment", back_populates="t1_records")


class AppointmentLog(Base):
    __tablename__ = "appointment_logs"

    id: int = Column(Integer, primary_key=True, index=True)
    # no foreign key: delete entries outlive their appointment
    appointment_id: int = Column(Integer, nullable=False, index=True)
    changed_by: Optional[int] = Column(Integer)
    action: str = Column(String, nullable=False)  # create, status_change, comment, clone, delete, sad_auto_close
    message: Optional[str] = Column(String)
    before: Optional[dict] = Column(JSON)
    after: Optional[dict] = Column(JSON)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: int = Column(Integer, primary_key=True, index=True)
    action: str = Column(String, nullable=False)  # create, update, delete
    ticket_id: Optional[int] = Column(Integer, index=True)
    ticket_no: Optional[str] = Column(String)
    user_id: Optional[int] = Column(Integer)
    username: Optional[str] = Column(String)
    details: Optional[dict] = Column(JSON)  # {"before": ..., "after": ...}
    created_at: datetime = Column(DateTime, default=datetime.utcnow)


class ReportGenerated(Base):
    __tablename__ = "reports_generated"

    id: int = Column(Integer, primary_key=True, index=True)
    report_type: str = Column(String, nullable=False)  # tickets_csv, tickets_pdf, outgate_csv, sad_csv, sad_pdf, ...
    generated_by: Optional[int] = Column(Integer)
    filename: Optional[str] = Column(String)
    filters: Optional[dict] = Column(JSON)
    generated_at: datetime = Column(DateTime, default=datetime.utcnow)
