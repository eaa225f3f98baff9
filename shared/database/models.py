"""Modelos SQLAlchemy del control de acceso y canje de tickets"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class TicketStatus:
    ISSUED = "issued"
    USED = "used"
    CANCELLED = "cancelled"


class CredentialKind:
    OTP = "otp"
    PASSWORD = "password"


class Event(Base):
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    scan_enabled = Column(Boolean, nullable=False, default=True)
    vendor_user_id = Column(String, nullable=True)  # Dueño del servicio (vendor)
    organizer_email = Column(String, nullable=True)
    organizer_phone = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    tickets = relationship("Ticket", back_populates="event")
    credentials = relationship("GateCredential", back_populates="event")
    scan_sessions = relationship("ScanSession", back_populates="event")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("code", "event_id", name="uq_ticket_code_event"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, index=True)  # TKT-XXXXXX
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    owner_ref = Column(String, nullable=True)  # Referencia a la reserva/comprador
    status = Column(String, nullable=False, default=TicketStatus.ISSUED)  # issued, used, cancelled
    used_at = Column(DateTime(timezone=True), nullable=True)  # Se setea una sola vez
    scanned_by = Column(String, nullable=True)  # Identidad del terminal que canjeó
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="tickets")


class GateCredential(Base):
    """OTP de un solo uso para desbloquear un terminal de escaneo"""
    __tablename__ = "gate_credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    kind = Column(String, nullable=False, default=CredentialKind.OTP)
    code = Column(String, nullable=False)
    recipient = Column(String, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    ttl_seconds = Column(Integer, nullable=False)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    event = relationship("Event", back_populates="credentials")


class ScanSession(Base):
    """Ventana de tiempo en la que un terminal puede canjear tickets"""
    __tablename__ = "scan_sessions"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_scan_session_window"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    authorized_identity = Column(String, nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)  # Sign-out anticipado
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="scan_sessions")
