import pytest
from fastapi.testclient import TestClient

from backend.auth import jwt_handler
from backend.auth.passwords import hash_password
from backend.database import get_db
from backend.main import app
from backend.models.user import User


@pytest.fixture
def client(session_factory, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('backend.routes.appointment_routes.ensure_database_ready', lambda: None)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def register_patient(db_session):
    def register(patient_id: str, password: str = 'correct-horse', email: str | None = None) -> dict:
        db_session.add(User(patient_id=patient_id, email=email, hashed_password=hash_password(password)))
        db_session.commit()
        token = jwt_handler.create_access_token(subject=patient_id)
        return {'Authorization': f'Bearer {token}'}

    return register
