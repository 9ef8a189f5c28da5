import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import get_db
from backend.models.user import User
from backend.scheduling.service import PatientIdentity

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> PatientIdentity | None:
    """Resolve the bearer token to a patient, or ``None`` when the caller is unauthenticated."""
    if credentials is None:
        return None

    patient_id = jwt_handler.patient_id_from_token(credentials.credentials)
    if patient_id is None:
        logger.info('Rejected bearer token: invalid or expired.')
        return None

    try:
        user_exists = db.execute(
            select(User.id).where(User.patient_id == patient_id)
        ).first() is not None
    except SQLAlchemyError as exc:
        logger.exception('Identity lookup failed.')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Please retry shortly.',
        ) from exc

    if not user_exists:
        logger.info('Rejected bearer token: patient %s not registered.', patient_id)
        return None
    return PatientIdentity(patient_id=patient_id)


def require_identity(identity: PatientIdentity | None = Depends(get_current_identity)) -> PatientIdentity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized.')
    return identity
