# tests/test_scheduling.py
from datetime import date, datetime, time

import pytest
from sqlalchemy import text

from clinic import crud, models
from clinic.results import ErrorKind, NotFound, Success, SystemFailure, ValidationFailure
from clinic.services.directory import DoctorDirectory, clean_doctor_name
from clinic.services.scheduling import DOCTOR_BUSY, OUT_OF_RANGE, PATIENT_BUSY, SchedulingEngine, format_display_datetime
from clinic.sessions import UserSession

from conftest import audit_actions

DAY = date(2026, 3, 3)


@pytest.fixture
def engine(db, clock, audit):
    return SchedulingEngine(db, clock, audit)


@pytest.fixture
def staff_ctx(ctx, clock):
    ctx.session = UserSession(
        session_id="s-1", authenticated=True, user_id=7, username="admin", role="admin",
        login_time=clock(), last_activity=clock(),
    )
    return ctx


def book(engine, ctx, patient_id, doctor="Dr. Tan", at=time(10, 0), duration=60, on=DAY, reason="Chest pain review"):
    return engine.schedule(ctx, patient_id, doctor, on, at, reason, duration)


def test_clean_doctor_name_strips_specialization():
    assert clean_doctor_name("Dr. Ali Rahman (General Practice)") == "Dr. Ali Rahman"
    assert clean_doctor_name("Dr. Ali Rahman") == "Dr. Ali Rahman"
    assert clean_doctor_name("  Dr. X (A) (B)") == "Dr. X"


def test_doctor_resolution_is_idempotent(db, doctors):
    directory = DoctorDirectory(db)
    assert directory.resolve("Dr. Ali Rahman (General Practice)") == doctors["ali"].id
    assert directory.resolve("Dr. Ali Rahman") == doctors["ali"].id
    assert directory.resolve("Dr. Tan") == doctors["tan"].id
    assert directory.resolve("Dr. Nobody") is None


def test_schedule_success_persists_and_audits(engine, staff_ctx, patient, doctors, db):
    result = book(engine, staff_ctx, patient.id, doctor="Dr. Tan Wei Ming (Cardiology)")

    assert isinstance(result, Success)
    appointment = crud.get_appointment(db, result.value)
    assert appointment.start_time == datetime(2026, 3, 3, 10, 0)
    assert appointment.end_time == datetime(2026, 3, 3, 11, 0)
    assert appointment.doctor_id == doctors["tan"].id
    assert appointment.doctor_name == "Dr. Tan Wei Ming (Cardiology)"
    assert appointment.reason == "Chest pain review"

    log = db.query(models.AuditLog).one()
    assert log.action == "SCHEDULE"
    assert log.user_id == 7
    assert log.username == "admin"
    assert log.description == "Scheduled appointment with Doctor: Dr. Tan Wei Ming (Cardiology) on 2026-03-03 at 10:00"


def test_reason_is_encrypted_at_rest(engine, staff_ctx, patient, db):
    result = book(engine, staff_ctx, patient.id)
    raw = db.execute(text("SELECT reason FROM appointments")).scalar_one()
    assert b"Chest pain" not in raw
    assert crud.get_appointment(db, result.value).reason == "Chest pain review"


def test_default_duration_is_sixty_minutes(engine, staff_ctx, patient, db):
    result = engine.schedule(staff_ctx, patient.id, "Dr. Tan", DAY, time(9, 0), "Checkup", None)
    assert crud.get_appointment(db, result.value).duration_minutes == 60


def test_missing_fields_are_reported_together(engine, staff_ctx, db):
    result = engine.schedule(staff_ctx, None, "", None, None, "")

    assert isinstance(result, ValidationFailure)
    assert result.messages == [
        "Please select a patient.",
        "Please select an appointment date.",
        "Please select an appointment time.",
        "Please enter the doctor's name.",
        "Please enter the reason for the appointment.",
    ]
    assert audit_actions(db) == ["SCHEDULE_FAILED"]


def test_past_start_is_rejected(engine, staff_ctx, patient, clock):
    result = book(engine, staff_ctx, patient.id, on=clock().date(), at=time(8, 59))
    assert isinstance(result, ValidationFailure)
    assert result.messages == ["Appointment date and time cannot be in the past."]


def test_start_exactly_now_is_allowed(engine, staff_ctx, patient, clock):
    result = book(engine, staff_ctx, patient.id, on=clock().date(), at=clock().time())
    assert isinstance(result, Success)


def test_unknown_patient_is_rejected(engine, staff_ctx, db):
    result = book(engine, staff_ctx, 999)
    assert isinstance(result, ValidationFailure)
    assert result.messages == ["Selected patient does not exist."]
    assert db.query(models.Appointment).count() == 0


def test_doctor_overlap_is_rejected_and_back_to_back_accepted(engine, staff_ctx, patient, other_patient, doctors, db):
    assert isinstance(book(engine, staff_ctx, patient.id, at=time(10, 0)), Success)

    clash = book(engine, staff_ctx, other_patient.id, at=time(10, 30))
    assert isinstance(clash, ValidationFailure)
    assert clash.messages == [DOCTOR_BUSY]

    adjacent = book(engine, staff_ctx, other_patient.id, at=time(11, 0))
    assert isinstance(adjacent, Success)

    before = book(engine, staff_ctx, other_patient.id, at=time(9, 0))
    assert isinstance(before, Success)
    assert audit_actions(db) == ["SCHEDULE", "SCHEDULE_FAILED", "SCHEDULE", "SCHEDULE"]


@pytest.mark.parametrize("start,duration", [
    (time(9, 30), 60),   # overlaps the start
    (time(10, 30), 60),  # overlaps the end
    (time(10, 15), 30),  # inside
    (time(9, 0), 180),   # encloses
    (time(10, 0), 60),   # identical
])
def test_patient_overlap_is_rejected(engine, staff_ctx, patient, doctors, start, duration):
    book(engine, staff_ctx, patient.id, doctor="Dr. Ali Rahman", at=time(10, 0))

    result = book(engine, staff_ctx, patient.id, doctor="Dr. Tan", at=start, duration=duration)
    assert isinstance(result, ValidationFailure)
    assert result.messages == [PATIENT_BUSY]


def test_both_conflicts_reported(engine, staff_ctx, patient, doctors):
    book(engine, staff_ctx, patient.id, at=time(10, 0))
    result = book(engine, staff_ctx, patient.id, at=time(10, 0))
    assert result.messages == [DOCTOR_BUSY, PATIENT_BUSY]


def test_unresolved_doctor_does_not_block_scheduling(engine, staff_ctx, patient, other_patient, db):
    result = book(engine, staff_ctx, patient.id, doctor="Dr. Visiting Locum")
    assert isinstance(result, Success)
    appointment = crud.get_appointment(db, result.value)
    assert appointment.doctor_id is None
    assert appointment.doctor_name == "Dr. Visiting Locum"

    # Name-only doctors still conflict on their display name
    clash = book(engine, staff_ctx, other_patient.id, doctor="Dr. Visiting Locum", at=time(10, 30))
    assert clash.messages == [DOCTOR_BUSY]


def test_doctor_conflict_matches_resolved_id_across_spellings(engine, staff_ctx, patient, other_patient, doctors):
    book(engine, staff_ctx, patient.id, doctor="Dr. Tan Wei Ming (Cardiology)")
    clash = book(engine, staff_ctx, other_patient.id, doctor="Dr. Tan Wei Ming", at=time(10, 30))
    assert clash.messages == [DOCTOR_BUSY]


def test_store_failure_audits_schedule_failed(engine, staff_ctx, patient, db, monkeypatch):
    def broken(*args, **kwargs):
        raise crud.StoreUnavailable("Database error while inserting appointment")

    monkeypatch.setattr(crud, "add_appointment", broken)
    result = book(engine, staff_ctx, patient.id)

    assert isinstance(result, SystemFailure)
    assert result.kind == ErrorKind.STORE_UNAVAILABLE
    assert audit_actions(db) == ["SCHEDULE_FAILED"]


# --- cancel ---

def test_cancel_deletes_and_audits_description(engine, staff_ctx, patient, db):
    appointment_id = book(engine, staff_ctx, patient.id, at=time(14, 30)).value

    result = engine.cancel(staff_ctx, appointment_id)

    assert result == Success(True)
    assert crud.get_appointment(db, appointment_id) is None
    log = db.query(models.AuditLog).order_by(models.AuditLog.id.desc()).first()
    assert log.action == "DELETE"
    assert log.description == "Cancelled appointment for patient Aisyah Binti Omar with Dr. Tan scheduled for Mar 3, 2026 2:30 PM"


def test_cancel_unknown_appointment_is_not_found(engine, staff_ctx):
    result = engine.cancel(staff_ctx, 12345)
    assert isinstance(result, NotFound)
    assert result.message == "Appointment not found."


def test_cancelled_slot_can_be_rebooked(engine, staff_ctx, patient, other_patient):
    appointment_id = book(engine, staff_ctx, patient.id).value
    engine.cancel(staff_ctx, appointment_id)
    assert isinstance(book(engine, staff_ctx, other_patient.id), Success)


def test_display_datetime_format():
    assert format_display_datetime(datetime(2026, 1, 5, 0, 5)) == "Jan 5, 2026 12:05 AM"
    assert format_display_datetime(datetime(2026, 12, 25, 12, 0)) == "Dec 25, 2026 12:00 PM"


# --- edit ---

def edit(engine, ctx, appointment_id, start, end, on=DAY, doctor="Dr. Tan", reason="Chest pain review"):
    return engine.edit(ctx, appointment_id, on, start, end, doctor, reason)


def test_edit_shift_within_own_slot_is_allowed(engine, staff_ctx, patient, db):
    appointment_id = book(engine, staff_ctx, patient.id, at=time(10, 0)).value

    result = edit(engine, staff_ctx, appointment_id, time(10, 15), time(11, 15))

    assert isinstance(result, Success)
    appointment = crud.get_appointment(db, appointment_id)
    assert appointment.start_time == datetime(2026, 3, 3, 10, 15)
    assert appointment.end_time == datetime(2026, 3, 3, 11, 15)
    log = db.query(models.AuditLog).order_by(models.AuditLog.id.desc()).first()
    assert log.action == "UPDATE"
    assert log.description == (
        "Updated appointment for patient: Aisyah Binti Omar with Dr. Tan - "
        "Start time changed from 10:00 AM to 10:15 AM; End time changed from 11:00 AM to 11:15 AM"
    )


def test_edit_still_checks_other_appointments(engine, staff_ctx, patient, other_patient):
    book(engine, staff_ctx, other_patient.id, at=time(11, 0))
    appointment_id = book(engine, staff_ctx, patient.id, at=time(10, 0)).value

    result = edit(engine, staff_ctx, appointment_id, time(10, 15), time(11, 15))
    assert isinstance(result, ValidationFailure)
    assert result.messages == [DOCTOR_BUSY]


@pytest.mark.parametrize("end,minutes", [(time(10, 45), "45"), (time(12, 30), "150"), (time(10, 10), "10")])
def test_edit_rejects_durations_outside_allowed_set(engine, staff_ctx, patient, end, minutes):
    appointment_id = book(engine, staff_ctx, patient.id, at=time(10, 0)).value
    result = edit(engine, staff_ctx, appointment_id, time(10, 0), end)
    assert result.messages == [
        f"Appointment duration must be exactly 30, 60, 90, or 120 minutes. Current duration: {minutes} minutes."
    ]


@pytest.mark.parametrize("end", [time(10, 30), time(11, 0), time(11, 30), time(12, 0)])
def test_edit_accepts_allowed_durations(engine, staff_ctx, patient, end):
    appointment_id = book(engine, staff_ctx, patient.id, at=time(10, 0)).value
    assert isinstance(edit(engine, staff_ctx, appointment_id, time(10, 0), end), Success)


def test_edit_end_before_start(engine, staff_ctx, patient):
    appointment_id = book(engine, staff_ctx, patient.id).value
    result = edit(engine, staff_ctx, appointment_id, time(11, 0), time(10, 0))
    assert result.messages == ["End time must be after start time."]


def test_edit_into_past_is_rejected(engine, staff_ctx, patient, db, clock):
    appointment_id = book(engine, staff_ctx, patient.id).value
    result = edit(engine, staff_ctx, appointment_id, time(8, 0), time(9, 0), on=clock().date())
    assert result.messages == ["Cannot schedule appointments in the past."]
    assert audit_actions(db)[-1] == "UPDATE_FAILED"


def test_edit_unknown_appointment(engine, staff_ctx):
    assert isinstance(edit(engine, staff_ctx, 404, time(10, 0), time(11, 0)), NotFound)


def test_edit_lists_doctor_and_reason_changes(engine, staff_ctx, patient, doctors, db):
    appointment_id = book(engine, staff_ctx, patient.id).value
    result = edit(
        engine, staff_ctx, appointment_id, time(10, 0), time(11, 0),
        doctor="Dr. Ali Rahman (General Practice)", reason="Follow-up",
    )

    assert result.value.doctor_id == doctors["ali"].id
    log = db.query(models.AuditLog).order_by(models.AuditLog.id.desc()).first()
    assert "Doctor changed from Dr. Tan to Dr. Ali Rahman (General Practice)" in log.description
    assert 'Reason changed from "Chest pain review" to "Follow-up"' in log.description


def test_list_upcoming_only(engine, staff_ctx, patient, clock):
    book(engine, staff_ctx, patient.id, on=clock().date(), at=time(9, 0))
    book(engine, staff_ctx, patient.id, at=time(10, 0))
    clock.advance(hours=2)

    assert len(engine.list().value) == 2
    upcoming = engine.list(upcoming_only=True).value
    assert [a.start_time for a in upcoming] == [datetime(2026, 3, 3, 10, 0)]


def test_get_audits_read(engine, staff_ctx, patient, db):
    appointment_id = book(engine, staff_ctx, patient.id).value
    result = engine.get(staff_ctx, appointment_id)
    assert result.value.patient_name == "Aisyah Binti Omar"
    assert audit_actions(db)[-1] == "READ"


@pytest.mark.parametrize("on,at,duration", [
    (date(9999, 12, 31), time(23, 30), 60),
    (DAY, time(10, 0), 10**10),
])
def test_end_past_last_supported_date_is_a_validation_failure(engine, staff_ctx, patient, db, on, at, duration):
    result = book(engine, staff_ctx, patient.id, on=on, at=at, duration=duration)

    assert isinstance(result, ValidationFailure)
    assert result.messages == [OUT_OF_RANGE]
    assert db.query(models.Appointment).count() == 0
    assert audit_actions(db) == ["SCHEDULE_FAILED"]
