# clinic/models.py
import enum
import logging

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, LargeBinary, Boolean, Index,
    Enum as SQLAlchemyEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base
from .security import MEDICAL, IC, get_field_cipher

logger = logging.getLogger(__name__)


class UserRole(str, enum.Enum):
    admin = "admin"
    doctor = "doctor"


class AuditAction(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    CREATE = "CREATE"
    CREATE_FAILED = "CREATE_FAILED"
    READ = "READ"
    READ_FAILED = "READ_FAILED"
    UPDATE = "UPDATE"
    UPDATE_FAILED = "UPDATE_FAILED"
    DELETE = "DELETE"
    DELETE_FAILED = "DELETE_FAILED"
    SCHEDULE = "SCHEDULE"
    SCHEDULE_FAILED = "SCHEDULE_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    BACKUP_CREATE = "BACKUP_CREATE"
    BACKUP_DOWNLOAD = "BACKUP_DOWNLOAD"
    BACKUP_FAILED = "BACKUP_FAILED"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def display(cls, value: str) -> str:
        """Human label for a stored action tag; unknown tags display as-is."""
        try:
            return cls(value).label
        except ValueError:
            return value


class EncryptedText(TypeDecorator):
    """Text column encrypted on write and decrypted on read with a named field cipher.

    Decryption failures load as None rather than raising.
    """

    impl = LargeBinary
    cache_ok = True

    def __init__(self, purpose: str, *args, **kwargs):
        self.purpose = purpose
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_field_cipher(self.purpose).encrypt(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return get_field_cipher(self.purpose).decrypt(value)


class User(Base):
    """Login account (the credential store)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLAlchemyEnum(UserRole, name='user_role'), default=UserRole.admin, nullable=False)
    created_at = Column(DateTime, nullable=True)

    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    specialization = Column(String(100), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    user = relationship("User", back_populates="doctor_profile")
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def display_name(self) -> str:
        if self.specialization:
            return f"{self.name} ({self.specialization})"
        return self.name


class Patient(Base):
    """Patient record with encrypted IC number and diagnosis"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    ic_number = Column(EncryptedText(IC), nullable=True)
    diagnosis = Column(EncryptedText(MEDICAL), nullable=True)
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime, nullable=True)

    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_time', 'doctor_name', 'start_time', 'end_time'),
        Index('idx_appointments_patient_time', 'patient_id', 'start_time', 'end_time'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    # doctor_id may stay unresolved; doctor_name keeps the text as entered
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True, index=True)
    doctor_name = Column(String(100), nullable=False)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)
    reason = Column(EncryptedText(MEDICAL), nullable=False)
    created_at = Column(DateTime, nullable=False)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @property
    def patient_name(self):
        return self.patient.name if self.patient else None


class LoginAttempt(Base):
    """One row per login attempt; rows older than the lockout window are purged."""
    __tablename__ = "login_attempts"
    __table_args__ = (
        Index('idx_login_attempts_username_time', 'username', 'attempt_time'),
        Index('idx_login_attempts_ip_time', 'ip_address', 'attempt_time'),
    )

    id = Column(Integer, primary_key=True, index=True)
    ip_address = Column(String(45), nullable=False)
    username = Column(String(255), nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    attempt_time = Column(DateTime, nullable=False, index=True)
    lockout_until = Column(DateTime, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)


class AuditLog(Base):
    """Append-only audit trail"""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_user_date', 'user_id', 'created_at'),
        Index('idx_audit_action_date', 'action', 'created_at'),
    )

    id = Column(Integer, primary_key=True, index=True)
    # 0 marks anonymous/unauthenticated actors, so no foreign key
    user_id = Column(Integer, nullable=False, default=0)
    username = Column(String(255), nullable=False)
    # Plain string so tags written by newer code still load
    action = Column(String(50), nullable=False)
    description = Column(String(2000), nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    @property
    def action_label(self) -> str:
        return AuditAction.display(self.action)
