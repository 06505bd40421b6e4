# tests/test_seed.py
from clinic import crud, models
from clinic.security import verify_password
from clinic.seed import DEFAULT_DOCTORS, seed


def test_seed_creates_admin_and_doctors(db, settings):
    configured = settings.model_copy(update={"admin_default_password": "Adm1n!pass", "doctor_default_password": "D0c!pass"})

    seed(db, configured)

    admin = crud.get_user_by_username(db, "admin")
    assert admin.role == models.UserRole.admin
    assert verify_password("Adm1n!pass", admin.password_hash)
    assert db.query(models.Doctor).count() == len(DEFAULT_DOCTORS)
    ali = crud.get_doctor_by_exact_name(db, "Dr. Ali Rahman")
    assert ali.specialization == "General Practice"
    assert ali.user.username == "dr.ali"


def test_seed_is_idempotent_and_resyncs_password(db, settings):
    seed(db, settings.model_copy(update={"admin_default_password": "first-pass", "doctor_default_password": "doc-pass"}))
    seed(db, settings.model_copy(update={"admin_default_password": "second-pass", "doctor_default_password": "doc-pass"}))

    assert db.query(models.User).count() == 1 + len(DEFAULT_DOCTORS)
    assert db.query(models.Doctor).count() == len(DEFAULT_DOCTORS)
    assert verify_password("second-pass", crud.get_user_by_username(db, "admin").password_hash)


def test_seed_skips_without_passwords(db, settings):
    seed(db, settings.model_copy(update={"admin_default_password": None, "doctor_default_password": None}))
    assert db.query(models.User).count() == 0
