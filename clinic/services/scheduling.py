# clinic/services/scheduling.py
# Appointment validation, conflict detection and persistence.
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from .. import crud, models
from ..audit_trail import AuditTrail
from ..clock import Clock
from ..context import RequestContext
from ..models import AuditAction
from ..results import ErrorKind, NotFound, Success, SystemFailure, ValidationFailure
from .directory import DoctorDirectory, PatientDirectory

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60
ALLOWED_EDIT_DURATIONS = (30, 60, 90, 120)

DOCTOR_BUSY = "Time Clash! This Doctor is already busy at that time."
PATIENT_BUSY = "Time Clash! This Patient already has an appointment at that time."
APPOINTMENT_NOT_FOUND = "Appointment not found."
OUT_OF_RANGE = "Appointment date and duration run past the last supported date."


def format_display_datetime(value: datetime) -> str:
    """'Oct 20, 2026 2:30 PM'"""
    hour = value.hour % 12 or 12
    return f"{value:%b} {value.day}, {value.year} {hour}:{value:%M} {value:%p}"


def format_display_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{hour}:{value:%M} {value:%p}"


def _shorten(text: Optional[str], limit: int = 50) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


def _failure_kind(error: crud.CRUDError) -> ErrorKind:
    if isinstance(error, crud.EncryptionFailure):
        return ErrorKind.ENCRYPTION_FAILURE
    return ErrorKind.STORE_UNAVAILABLE


class SchedulingEngine:
    """Creates, edits and cancels appointments.

    Conflicts use half-open intervals: ``[s, e)`` clashes with ``[s2, e2)``
    when ``s < e2 and s2 < e``, so back-to-back bookings are accepted. A
    booking clashes when either the doctor or the patient is already busy.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock,
        audit: AuditTrail,
        patients: Optional[PatientDirectory] = None,
        doctors: Optional[DoctorDirectory] = None,
    ):
        self.db = db
        self.clock = clock
        self.audit = audit
        self.patients = patients or PatientDirectory(db)
        self.doctors = doctors or DoctorDirectory(db)

    def _record(self, ctx: RequestContext, action: AuditAction, description: str) -> None:
        self.audit.record(ctx.actor_id, ctx.actor_name, action, description, ctx.ip_address)

    def _conflicts(
        self,
        start: datetime,
        end: datetime,
        patient_id: int,
        doctor_name: str,
        doctor_id: Optional[int],
        exclude_id: Optional[int] = None,
    ) -> List[str]:
        errors = []
        if crud.count_doctor_conflicts(self.db, start, end, doctor_name, doctor_id=doctor_id, exclude_id=exclude_id):
            errors.append(DOCTOR_BUSY)
        if crud.count_patient_conflicts(self.db, start, end, patient_id, exclude_id=exclude_id):
            errors.append(PATIENT_BUSY)
        return errors

    # ==================== SCHEDULE ====================

    def schedule(
        self,
        ctx: RequestContext,
        patient_id: Optional[int],
        doctor_name: Optional[str],
        appointment_date: Optional[date],
        appointment_time: Optional[time],
        reason: Optional[str],
        duration_minutes: Optional[int] = DEFAULT_DURATION_MINUTES,
    ) -> Union[Success[int], ValidationFailure, SystemFailure]:
        doctor_name = (doctor_name or "").strip()
        reason = (reason or "").strip()
        if duration_minutes is None:
            duration_minutes = DEFAULT_DURATION_MINUTES

        errors = []
        if not patient_id:
            errors.append("Please select a patient.")
        if appointment_date is None:
            errors.append("Please select an appointment date.")
        if appointment_time is None:
            errors.append("Please select an appointment time.")
        if not doctor_name:
            errors.append("Please enter the doctor's name.")
        if not reason:
            errors.append("Please enter the reason for the appointment.")
        if duration_minutes <= 0:
            errors.append("Appointment duration must be a positive number of minutes.")

        start = end = None
        if appointment_date is not None and appointment_time is not None:
            start = datetime.combine(appointment_date, appointment_time)
            if start < self.clock():
                errors.append("Appointment date and time cannot be in the past.")
            if duration_minutes > 0:
                try:
                    end = start + timedelta(minutes=duration_minutes)
                except OverflowError:
                    errors.append(OUT_OF_RANGE)

        date_text = appointment_date.isoformat() if appointment_date else "unknown date"

        doctor_id = None
        try:
            if not errors:
                if self.patients.get_patient(patient_id) is None:
                    errors.append("Selected patient does not exist.")
                else:
                    doctor_id = self.doctors.resolve(doctor_name)
                    if doctor_id is None:
                        logger.info(f"Doctor '{doctor_name}' not found in directory; scheduling by name only")
                    crud.lock_scheduling_rows(self.db, patient_id, doctor_id)
                    errors.extend(self._conflicts(start, end, patient_id, doctor_name, doctor_id))

            if errors:
                self.db.rollback()
                self._record(
                    ctx, AuditAction.SCHEDULE_FAILED,
                    f"Failed to schedule appointment with Doctor: {doctor_name} on {date_text} - Validation errors: {', '.join(errors)}",
                )
                return ValidationFailure(errors)

            appointment = models.Appointment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                doctor_name=doctor_name,
                start_time=start,
                end_time=end,
                reason=reason,
                created_at=self.clock(),
            )
            crud.add_appointment(self.db, appointment)
            appointment_id = appointment.id
            crud.commit(self.db, "scheduling appointment")
        except crud.CRUDError as e:
            self.db.rollback()
            self._record(
                ctx, AuditAction.SCHEDULE_FAILED,
                f"Failed to schedule appointment with Doctor: {doctor_name} on {date_text} - Error: {e}",
            )
            return SystemFailure(_failure_kind(e))

        logger.info(f"Appointment {appointment_id} scheduled for patient {patient_id} with '{doctor_name}'")
        self._record(
            ctx, AuditAction.SCHEDULE,
            f"Scheduled appointment with Doctor: {doctor_name} on {date_text} at {appointment_time:%H:%M}",
        )
        return Success(appointment_id)

    # ==================== EDIT ====================

    def edit(
        self,
        ctx: RequestContext,
        appointment_id: int,
        appointment_date: Optional[date],
        start_time: Optional[time],
        end_time: Optional[time],
        doctor_name: Optional[str],
        reason: Optional[str],
    ) -> Union[Success[models.Appointment], ValidationFailure, NotFound, SystemFailure]:
        """Re-validate and update an appointment as if it were being created again.

        The appointment's own current row is excluded from the conflict check.
        """
        try:
            appointment = crud.get_appointment(self.db, appointment_id)
        except crud.CRUDError as e:
            self.db.rollback()
            self._record(
                ctx, AuditAction.UPDATE_FAILED,
                f"Failed to update appointment - Appointment ID: {appointment_id} - Error: {e}",
            )
            return SystemFailure(_failure_kind(e))
        if appointment is None:
            return NotFound(APPOINTMENT_NOT_FOUND)

        doctor_name = (doctor_name or "").strip()
        reason = (reason or "").strip()

        errors = []
        if appointment_date is None:
            errors.append("Appointment date is required.")
        if start_time is None:
            errors.append("Start time is required.")
        if end_time is None:
            errors.append("End time is required.")
        if not doctor_name:
            errors.append("Doctor name is required.")
        if not reason:
            errors.append("Appointment reason is required.")

        start = end = None
        if appointment_date is not None and start_time is not None and end_time is not None:
            start = datetime.combine(appointment_date, start_time)
            end = datetime.combine(appointment_date, end_time)
            if end <= start:
                errors.append("End time must be after start time.")
            else:
                minutes = (end - start).total_seconds() / 60
                if minutes not in ALLOWED_EDIT_DURATIONS:
                    errors.append(
                        "Appointment duration must be exactly 30, 60, 90, or 120 minutes. "
                        f"Current duration: {minutes:g} minutes."
                    )
            if start < self.clock():
                errors.append("Cannot schedule appointments in the past.")

        patient_name = appointment.patient.name if appointment.patient else "Unknown"
        old = {
            "start": appointment.start_time,
            "end": appointment.end_time,
            "doctor": appointment.doctor_name,
            "reason": appointment.reason,
        }

        try:
            doctor_id = None
            if not errors:
                doctor_id = self.doctors.resolve(doctor_name)
                crud.lock_scheduling_rows(self.db, appointment.patient_id, doctor_id)
                errors.extend(
                    self._conflicts(start, end, appointment.patient_id, doctor_name, doctor_id, exclude_id=appointment.id)
                )

            if errors:
                self.db.rollback()
                self._record(
                    ctx, AuditAction.UPDATE_FAILED,
                    f"Failed to update appointment - Appointment ID: {appointment_id} - Validation errors: {', '.join(errors)}",
                )
                return ValidationFailure(errors)

            appointment.start_time = start
            appointment.end_time = end
            appointment.doctor_name = doctor_name
            appointment.doctor_id = doctor_id
            appointment.reason = reason
            crud.flush_appointment(self.db, appointment)
            crud.commit(self.db, f"updating appointment {appointment_id}")
        except crud.CRUDError as e:
            self.db.rollback()
            self._record(
                ctx, AuditAction.UPDATE_FAILED,
                f"Failed to update appointment - Appointment ID: {appointment_id} - Error: {e}",
            )
            return SystemFailure(_failure_kind(e))

        changes = self._describe_changes(old, start, end, doctor_name, reason)
        description = f"Updated appointment for patient: {patient_name} with {doctor_name}"
        if changes:
            description += " - " + "; ".join(changes)
        self._record(ctx, AuditAction.UPDATE, description)
        logger.info(f"Appointment {appointment_id} updated by '{ctx.actor_name}'")
        return Success(appointment)

    @staticmethod
    def _describe_changes(old: dict, start: datetime, end: datetime, doctor_name: str, reason: str) -> List[str]:
        changes = []
        if start.date() != old["start"].date():
            changes.append(f"Date changed from {old['start']:%b} {old['start'].day}, {old['start'].year} to {start:%b} {start.day}, {start.year}")
        if start.time() != old["start"].time():
            changes.append(f"Start time changed from {format_display_time(old['start'])} to {format_display_time(start)}")
        if end.time() != old["end"].time():
            changes.append(f"End time changed from {format_display_time(old['end'])} to {format_display_time(end)}")
        if doctor_name != old["doctor"]:
            changes.append(f"Doctor changed from {old['doctor']} to {doctor_name}")
        if reason != (old["reason"] or "").strip():
            changes.append(f'Reason changed from "{_shorten(old["reason"])}" to "{_shorten(reason)}"')
        return changes

    # ==================== CANCEL ====================

    def cancel(self, ctx: RequestContext, appointment_id: int) -> Union[Success[bool], NotFound, SystemFailure]:
        try:
            appointment = crud.get_appointment(self.db, appointment_id)
            if appointment is None:
                return NotFound(APPOINTMENT_NOT_FOUND)

            # Capture the description before the row is gone
            patient_name = appointment.patient.name if appointment.patient else "Unknown"
            description = (
                f"Cancelled appointment for patient {patient_name} with {appointment.doctor_name} "
                f"scheduled for {format_display_datetime(appointment.start_time)}"
            )
            crud.delete_appointment(self.db, appointment)
            crud.commit(self.db, f"cancelling appointment {appointment_id}")
        except crud.CRUDError as e:
            self.db.rollback()
            self._record(
                ctx, AuditAction.DELETE_FAILED,
                f"Failed to cancel appointment - Appointment ID: {appointment_id} - Error: {e}",
            )
            return SystemFailure(_failure_kind(e))

        self._record(ctx, AuditAction.DELETE, description)
        logger.info(f"Appointment {appointment_id} cancelled by '{ctx.actor_name}'")
        return Success(True)

    # ==================== READ ====================

    def get(self, ctx: RequestContext, appointment_id: int) -> Union[Success[models.Appointment], NotFound, SystemFailure]:
        try:
            appointment = crud.get_appointment(self.db, appointment_id)
        except crud.CRUDError as e:
            self.db.rollback()
            self._record(
                ctx, AuditAction.READ_FAILED,
                f"Failed to view appointment details - Appointment ID: {appointment_id} - Error: {e}",
            )
            return SystemFailure(_failure_kind(e))
        if appointment is None:
            return NotFound(APPOINTMENT_NOT_FOUND)

        patient_name = appointment.patient.name if appointment.patient else "Unknown"
        self._record(
            ctx, AuditAction.READ,
            f"Viewed appointment details for patient: {patient_name} with {appointment.doctor_name}",
        )
        return Success(appointment)

    def list(
        self,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        upcoming_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> Union[Success[List[models.Appointment]], SystemFailure]:
        start_from = self.clock() if upcoming_only else None
        try:
            appointments = crud.list_appointments(
                self.db, doctor_id=doctor_id, patient_id=patient_id, start_from=start_from, skip=skip, limit=limit
            )
        except crud.CRUDError as e:
            return SystemFailure(_failure_kind(e))
        return Success(appointments)
