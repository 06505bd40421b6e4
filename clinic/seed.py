# Seeds the admin account and the default doctors.
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .clock import clinic_clock
from .config import Settings, get_settings
from .core.logging import setup_logging
from .database import build_engine, build_session_factory, create_tables
from .security import configure_field_ciphers, get_password_hash, verify_password

logger = logging.getLogger(__name__)

DEFAULT_DOCTORS = [
    ("dr.ali", "Dr. Ali Rahman", "General Practice"),
    ("dr.siti", "Dr. Siti Nurhaliza", "Pediatrics"),
    ("dr.tan", "Dr. Tan Wei Ming", "Cardiology"),
    ("dr.priya", "Dr. Priya Sharma", "Dermatology"),
    ("dr.ahmad", "Dr. Ahmad Zaki", "Orthopedics"),
]


def upsert_user(db: Session, username: str, password: str, role: models.UserRole, created_at=None) -> models.User:
    """Create the account, or bring its password and role in line with the given values."""
    user = crud.get_user_by_username(db, username)
    if user is None:
        user = crud.create_user(db, username, password, role, created_at=created_at)
        logger.info(f"Created {role.value} account '{username}'")
        return user

    changed = False
    if not verify_password(password, user.password_hash):
        user.password_hash = get_password_hash(password)
        changed = True
    if user.role != role:
        user.role = role
        changed = True
    if changed:
        crud.commit(db, f"updating account '{username}'")
        logger.info(f"Account '{username}' updated to match configuration")
    return user


def seed_admin(db: Session, password: Optional[str], created_at=None) -> Optional[models.User]:
    if not password:
        logger.warning("ADMIN_DEFAULT_PASSWORD not set. Skipping admin user setup.")
        return None
    return upsert_user(db, "admin", password, models.UserRole.admin, created_at=created_at)


def seed_doctors(db: Session, password: Optional[str], created_at=None) -> int:
    """Create each default doctor's login and profile; returns how many profiles were added."""
    if not password:
        logger.warning("DOCTOR_DEFAULT_PASSWORD not set. Skipping doctor account setup.")
        return 0

    created = 0
    for username, name, specialization in DEFAULT_DOCTORS:
        user = upsert_user(db, username, password, models.UserRole.doctor, created_at=created_at)
        if crud.get_doctor_by_exact_name(db, name) is None:
            crud.create_doctor(db, name, specialization=specialization, user_id=user.id)
            logger.info(f"Created doctor profile '{name}' ({specialization})")
            created += 1
    return created


def seed(db: Session, settings: Settings, created_at=None) -> None:
    seed_admin(db, settings.admin_default_password, created_at=created_at)
    seed_doctors(db, settings.doctor_default_password, created_at=created_at)


def main():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    configure_field_ciphers(settings)

    engine = build_engine(settings.database_url)
    create_tables(engine)
    db = build_session_factory(engine)()
    try:
        seed(db, settings, created_at=clinic_clock(settings.clinic_timezone)())
    except crud.CRUDError as e:
        logger.error(f"CRITICAL: Error during initial data creation: {e}")
        raise SystemExit(1)
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    main()
