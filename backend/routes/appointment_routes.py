from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_identity
from backend.core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    SchedulingError,
    StorageError,
    ValidationError,
)
from backend.database import ensure_appointment_schema, get_db
from backend.scheduling.service import PatientIdentity, SchedulingService
from backend.schemas.appointment import (
    AppointmentRecord,
    BookAppointmentRequest,
    BookedAppointmentResponse,
    BookSelectedHospitalRequest,
    SuccessResponse,
    UpdateAppointmentRequest,
)
from backend.stores.appointment_store import SqlAppointmentStore

router = APIRouter(tags=['appointments'])


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    ensure_database_ready()
    return SchedulingService(lambda patient_id: SqlAppointmentStore(db, patient_id))


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, AuthError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=422,
            detail={'message': exc.message, 'errors': exc.errors},
        )
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={'message': exc.message, 'conflictingIds': exc.conflicting_ids},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, StorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


@router.post('/book', response_model=AppointmentRecord, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return service.book_appointment(identity, data.to_details())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/book-selected', response_model=BookedAppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_selected_hospital(
    data: BookSelectedHospitalRequest,
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        appointment = service.book_appointment(identity, data.to_details())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return BookedAppointmentResponse(appointment=appointment)


@router.get('/my-appointments', response_model=list[AppointmentRecord])
def list_my_appointments(
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return service.list_appointments(identity)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentRecord)
def get_my_appointment(
    appointment_id: str,
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return service.get_appointment(identity, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.put('/{appointment_id}', response_model=SuccessResponse)
def edit_my_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        service.edit_appointment(identity, appointment_id, data.to_changes())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return SuccessResponse()


@router.delete('/{appointment_id}', response_model=SuccessResponse)
def cancel_my_appointment(
    appointment_id: str,
    identity: PatientIdentity | None = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        service.cancel_appointment(identity, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return SuccessResponse()
