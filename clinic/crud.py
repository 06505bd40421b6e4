# clinic/crud.py - data access for the clinic core
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy import and_, or_, func
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import models
from .security import get_password_hash, EncryptionError

logger = logging.getLogger(__name__)


class CRUDError(Exception):
    pass


class StoreUnavailable(CRUDError):
    """The database could not be reached or rejected the statement."""


class EncryptionFailure(CRUDError):
    """A protected field could not be encrypted or decrypted."""


def _store_error(db: Session, error: Exception, action: str) -> CRUDError:
    db.rollback()
    logger.error(f"Database error while {action}: {error}", exc_info=True)
    if isinstance(error, EncryptionError) or isinstance(getattr(error, "orig", None), EncryptionError):
        return EncryptionFailure(f"Encryption error while {action}")
    return StoreUnavailable(f"Database error while {action}")


# ==================== USERS / CREDENTIAL STORE ====================

def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    """Exact, case-sensitive username lookup."""
    try:
        user = db.query(models.User).filter(models.User.username == username).first()
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"fetching user '{username}'")
    # Some collations compare case-insensitively; enforce exact match here
    if user is not None and user.username != username:
        return None
    return user


def create_user(db: Session, username: str, password: str, role: models.UserRole, created_at: Optional[datetime] = None) -> models.User:
    try:
        if db.query(models.User).filter(models.User.username == username).first():
            raise CRUDError("Username already exists")
        db_user = models.User(
            username=username,
            password_hash=get_password_hash(password),
            role=role,
            created_at=created_at,
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info(f"Created new user: {username} (ID: {db_user.id})")
        return db_user
    except IntegrityError:
        db.rollback()
        raise CRUDError("User creation failed due to data constraints")
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"creating user '{username}'")


# ==================== DOCTORS ====================

def get_doctor_by_exact_name(db: Session, name: str) -> Optional[models.Doctor]:
    try:
        return db.query(models.Doctor).filter(models.Doctor.name == name).order_by(models.Doctor.id).first()
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"looking up doctor '{name}'")


def get_doctor_by_partial_name(db: Session, fragment: str) -> Optional[models.Doctor]:
    try:
        return (
            db.query(models.Doctor)
            .filter(models.Doctor.name.contains(fragment, autoescape=True))
            .order_by(models.Doctor.id)
            .first()
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"searching doctors for '{fragment}'")


def create_doctor(db: Session, name: str, specialization: Optional[str] = None, user_id: Optional[int] = None) -> models.Doctor:
    try:
        db_doctor = models.Doctor(name=name, specialization=specialization, user_id=user_id)
        db.add(db_doctor)
        db.commit()
        db.refresh(db_doctor)
        return db_doctor
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"creating doctor '{name}'")


# ==================== PATIENTS ====================

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    """Get a single patient by ID."""
    try:
        return db.query(models.Patient).filter(models.Patient.id == patient_id).first()
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, f"fetching patient {patient_id}")


def create_patient(
    db: Session,
    name: str,
    ic_number: Optional[str] = None,
    diagnosis: Optional[str] = None,
    phone: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> models.Patient:
    try:
        db_patient = models.Patient(
            name=name,
            ic_number=ic_number,
            diagnosis=diagnosis,
            phone=phone,
            created_at=created_at,
        )
        db.add(db_patient)
        db.commit()
        db.refresh(db_patient)
        return db_patient
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, f"creating patient '{name}'")


# ==================== APPOINTMENTS ====================

def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    try:
        return (
            db.query(models.Appointment)
            .options(joinedload(models.Appointment.patient))
            .filter(models.Appointment.id == appointment_id)
            .first()
        )
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, f"fetching appointment {appointment_id}")


def list_appointments(
    db: Session,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    start_from: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Appointment]:
    try:
        query = db.query(models.Appointment).options(joinedload(models.Appointment.patient))
        if doctor_id is not None:
            query = query.filter(models.Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(models.Appointment.patient_id == patient_id)
        if start_from is not None:
            query = query.filter(models.Appointment.start_time >= start_from)
        return query.order_by(models.Appointment.start_time.asc()).offset(skip).limit(limit).all()
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, "listing appointments")


def _overlapping(start: datetime, end: datetime):
    # Half-open [start, end): touching boundaries do not overlap
    return and_(models.Appointment.start_time < end, models.Appointment.end_time > start)


def count_doctor_conflicts(
    db: Session,
    start: datetime,
    end: datetime,
    doctor_name: str,
    doctor_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> int:
    """Appointments overlapping [start, end) booked under this doctor's name or resolved id."""
    same_doctor = models.Appointment.doctor_name == doctor_name
    if doctor_id is not None:
        same_doctor = or_(same_doctor, models.Appointment.doctor_id == doctor_id)
    try:
        query = db.query(func.count(models.Appointment.id)).filter(same_doctor, _overlapping(start, end))
        if exclude_id is not None:
            query = query.filter(models.Appointment.id != exclude_id)
        return query.scalar() or 0
    except SQLAlchemyError as e:
        raise _store_error(db, e, "checking doctor availability")


def count_patient_conflicts(
    db: Session,
    start: datetime,
    end: datetime,
    patient_id: int,
    exclude_id: Optional[int] = None,
) -> int:
    try:
        query = db.query(func.count(models.Appointment.id)).filter(
            models.Appointment.patient_id == patient_id, _overlapping(start, end)
        )
        if exclude_id is not None:
            query = query.filter(models.Appointment.id != exclude_id)
        return query.scalar() or 0
    except SQLAlchemyError as e:
        raise _store_error(db, e, "checking patient availability")


def lock_scheduling_rows(db: Session, patient_id: int, doctor_id: Optional[int] = None) -> None:
    """Row-lock the patient (and doctor) so concurrent bookings for them serialise.

    SELECT ... FOR UPDATE is a no-op on SQLite, which serialises writers anyway.
    """
    try:
        db.query(models.Patient.id).filter(models.Patient.id == patient_id).with_for_update().first()
        if doctor_id is not None:
            db.query(models.Doctor.id).filter(models.Doctor.id == doctor_id).with_for_update().first()
    except SQLAlchemyError as e:
        raise _store_error(db, e, "locking scheduling rows")


def add_appointment(db: Session, appointment: models.Appointment) -> models.Appointment:
    """Stage a new appointment and flush to obtain its id. Caller commits."""
    try:
        db.add(appointment)
        db.flush()
        return appointment
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, "inserting appointment")


def flush_appointment(db: Session, appointment: models.Appointment) -> models.Appointment:
    try:
        db.flush()
        return appointment
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, f"updating appointment {appointment.id}")


def delete_appointment(db: Session, appointment: models.Appointment) -> None:
    try:
        db.delete(appointment)
        db.flush()
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"deleting appointment {appointment.id}")


def commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except (SQLAlchemyError, EncryptionError) as e:
        raise _store_error(db, e, action)


# ==================== LOGIN ATTEMPTS ====================

def purge_login_attempts(db: Session, older_than: datetime) -> int:
    """Delete every attempt (any username) recorded before ``older_than``."""
    try:
        return (
            db.query(models.LoginAttempt)
            .filter(models.LoginAttempt.attempt_time < older_than)
            .delete(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, "purging login attempts")


def clear_failed_attempts(db: Session, username: str) -> int:
    try:
        return (
            db.query(models.LoginAttempt)
            .filter(models.LoginAttempt.username == username, models.LoginAttempt.success.is_(False))
            .delete(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"clearing failed attempts for '{username}'")


def count_failed_attempts(db: Session, username: str, since: datetime) -> int:
    try:
        return (
            db.query(func.count(models.LoginAttempt.id))
            .filter(
                models.LoginAttempt.username == username,
                models.LoginAttempt.success.is_(False),
                models.LoginAttempt.attempt_time > since,
            )
            .scalar()
            or 0
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"counting failed attempts for '{username}'")


def insert_login_attempt(
    db: Session,
    ip_address: str,
    username: str,
    success: bool,
    attempt_time: datetime,
    lockout_until: Optional[datetime] = None,
    attempt_count: int = 0,
) -> models.LoginAttempt:
    try:
        attempt = models.LoginAttempt(
            ip_address=ip_address,
            username=username,
            success=success,
            attempt_time=attempt_time,
            lockout_until=lockout_until,
            attempt_count=attempt_count,
        )
        db.add(attempt)
        db.flush()
        return attempt
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"recording login attempt for '{username}'")


def get_active_lockout(db: Session, username: str, now: datetime) -> Optional[models.LoginAttempt]:
    """Most recent attempt for ``username`` whose lockout has not yet expired."""
    try:
        return (
            db.query(models.LoginAttempt)
            .filter(models.LoginAttempt.username == username, models.LoginAttempt.lockout_until > now)
            .order_by(models.LoginAttempt.attempt_time.desc(), models.LoginAttempt.id.desc())
            .first()
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"checking lockout for '{username}'")


def get_login_attempts(db: Session, username: str) -> List[models.LoginAttempt]:
    try:
        return (
            db.query(models.LoginAttempt)
            .filter(models.LoginAttempt.username == username)
            .order_by(models.LoginAttempt.attempt_time.asc(), models.LoginAttempt.id.asc())
            .all()
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, f"fetching login attempts for '{username}'")


# ==================== AUDIT LOGS ====================

def insert_audit_log(
    db: Session,
    user_id: int,
    username: str,
    action: str,
    description: Optional[str],
    ip_address: Optional[str],
    created_at: datetime,
) -> models.AuditLog:
    try:
        db_log = models.AuditLog(
            user_id=user_id,
            username=username,
            action=action,
            description=description,
            ip_address=ip_address,
            created_at=created_at,
        )
        db.add(db_log)
        db.commit()
        db.refresh(db_log)
        return db_log
    except SQLAlchemyError as e:
        raise _store_error(db, e, "writing audit log")


def count_audit_logs(db: Session, action: Optional[str] = None) -> int:
    try:
        query = db.query(func.count(models.AuditLog.id))
        if action:
            query = query.filter(models.AuditLog.action == action)
        return query.scalar() or 0
    except SQLAlchemyError as e:
        raise _store_error(db, e, "counting audit logs")


def get_audit_logs(db: Session, skip: int = 0, limit: int = 50, action: Optional[str] = None) -> List[models.AuditLog]:
    """Audit logs newest first."""
    try:
        query = db.query(models.AuditLog)
        if action:
            query = query.filter(models.AuditLog.action == action)
        return (
            query.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise _store_error(db, e, "fetching audit logs")
