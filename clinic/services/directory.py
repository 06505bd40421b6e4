# clinic/services/directory.py
# Lookups the scheduling engine and authenticator consume: patients, doctors, credentials.
from typing import Optional

from sqlalchemy.orm import Session

from .. import crud, models


def clean_doctor_name(display_name: str) -> str:
    """'Dr. Ali Rahman (General Practice)' -> 'Dr. Ali Rahman'"""
    return display_name.split("(", 1)[0].strip()


class PatientDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_patient(self, patient_id: int) -> Optional[models.Patient]:
        return crud.get_patient(self.db, patient_id)


class DoctorDirectory:
    def __init__(self, db: Session):
        self.db = db

    def find_by_exact_name(self, name: str) -> Optional[int]:
        doctor = crud.get_doctor_by_exact_name(self.db, name)
        return doctor.id if doctor else None

    def find_by_partial_name(self, fragment: str) -> Optional[int]:
        doctor = crud.get_doctor_by_partial_name(self.db, fragment)
        return doctor.id if doctor else None

    def resolve(self, display_name: str) -> Optional[int]:
        """Doctor id for a display string, or None when nothing matches.

        The parenthetical specialization suffix is stripped first, then an
        exact match is tried before a substring match.
        """
        name = clean_doctor_name(display_name)
        if not name:
            return None
        doctor_id = self.find_by_exact_name(name)
        if doctor_id is None:
            doctor_id = self.find_by_partial_name(name)
        return doctor_id


class CredentialStore:
    def __init__(self, db: Session):
        self.db = db

    def get_user_by_username(self, username: str) -> Optional[models.User]:
        return crud.get_user_by_username(self.db, username)
