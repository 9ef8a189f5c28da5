import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.auth.dependencies import require_identity
from backend.auth.passwords import hash_password, verify_password
from backend.database import get_db
from backend.models.user import User
from backend.scheduling.service import PatientIdentity
from backend.schemas.appointment import CamelModel

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

MIN_PASSWORD_LENGTH = 8


class RegisterRequest(CamelModel):
    patient_id: str
    password: str
    email: str | None = None

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Patient ID is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


class LoginRequest(CamelModel):
    patient_id: str
    password: str


class RegisterResponse(CamelModel):
    success: bool = True
    message: str


class UserData(CamelModel):
    patient_id: str
    email: str | None = None


class LoginResponse(CamelModel):
    success: bool = True
    message: str
    access_token: str
    token_type: str = 'bearer'
    user_data: UserData


def _database_unavailable() -> HTTPException:
    logger.exception('Account lookup failed.')
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Please retry shortly.',
    )


@router.post('/register', response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    try:
        existing = db.query(User).filter(User.patient_id == data.patient_id).first()
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='User already exists')

        db.add(User(
            patient_id=data.patient_id,
            email=data.email,
            hashed_password=hash_password(data.password),
        ))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='User already exists') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise _database_unavailable() from exc

    logger.info('Registered patient %s.', data.patient_id)
    return RegisterResponse(message='User registered successfully')


@router.post('/login', response_model=LoginResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.patient_id == data.patient_id.strip()).first()
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
    if not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid password')

    return LoginResponse(
        message='Login successful',
        access_token=jwt_handler.create_access_token(subject=user.patient_id),
        user_data=UserData(patient_id=user.patient_id, email=user.email),
    )


@router.get('/me', response_model=UserData)
def me(identity: PatientIdentity = Depends(require_identity), db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.patient_id == identity.patient_id).first()
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized.')
    return UserData(patient_id=user.patient_id, email=user.email)
