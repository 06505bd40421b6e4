# clinic/routers/appointments.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from .. import schemas
from ..context import RequestContext
from ..dependencies import (
    error_response, get_request_context, get_scheduling_engine, require_admin, require_session,
)
from ..results import Success
from ..services.scheduling import SchedulingEngine
from ..sessions import UserSession

router = APIRouter(
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


@router.post("/appointments", response_model=schemas.AppointmentCreated, status_code=status.HTTP_201_CREATED)
def create_appointment(
    appointment: schemas.AppointmentCreate,
    session: UserSession = Depends(require_session),
    ctx: RequestContext = Depends(get_request_context),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.schedule(
        ctx,
        patient_id=appointment.patient_id,
        doctor_name=appointment.doctor_name,
        appointment_date=appointment.appointment_date,
        appointment_time=appointment.appointment_time,
        reason=appointment.reason,
        duration_minutes=appointment.duration_minutes,
    )
    if not isinstance(result, Success):
        return error_response(result)
    return schemas.AppointmentCreated(id=result.value)


@router.get("/appointments", response_model=List[schemas.AppointmentResponse])
def read_appointments(
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    upcoming_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    session: UserSession = Depends(require_session),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.list(doctor_id=doctor_id, patient_id=patient_id, upcoming_only=upcoming_only, skip=skip, limit=limit)
    if not isinstance(result, Success):
        return error_response(result)
    return [schemas.AppointmentResponse.model_validate(appt) for appt in result.value]


@router.get("/appointments/{appointment_id}", response_model=schemas.AppointmentResponse)
def read_appointment(
    appointment_id: int,
    session: UserSession = Depends(require_session),
    ctx: RequestContext = Depends(get_request_context),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.get(ctx, appointment_id)
    if not isinstance(result, Success):
        return error_response(result)
    return schemas.AppointmentResponse.model_validate(result.value)


@router.put("/appointments/{appointment_id}", response_model=schemas.AppointmentResponse)
def update_appointment(
    appointment_id: int,
    changes: schemas.AppointmentUpdate,
    session: UserSession = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.edit(
        ctx,
        appointment_id,
        appointment_date=changes.appointment_date,
        start_time=changes.start_time,
        end_time=changes.end_time,
        doctor_name=changes.doctor_name,
        reason=changes.reason,
    )
    if not isinstance(result, Success):
        return error_response(result)
    return schemas.AppointmentResponse.model_validate(result.value)


@router.delete("/appointments/{appointment_id}")
def cancel_appointment(
    appointment_id: int,
    session: UserSession = Depends(require_session),
    ctx: RequestContext = Depends(get_request_context),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.cancel(ctx, appointment_id)
    if not isinstance(result, Success):
        return error_response(result)
    return {"message": "Appointment cancelled successfully."}
