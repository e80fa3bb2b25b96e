import os
import uuid
from datetime import datetime, timezone

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite:///./test_usdt_billing.db"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["TRON_KEY_ENCRYPTION_SECRET"] = "test-encryption-secret"
os.environ["MERCHANT_BSC_ADDRESS"] = "0x1111111111111111111111111111111111111111"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from usdt_billing.auth import create_access_token
from usdt_billing.db import Base, engine, SessionLocal
from usdt_billing.main import app
from usdt_billing.models import User

@pytest.fixture(scope="session", autouse=True)
def create_test_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if os.path.exists("./test_usdt_billing.db"):
        os.remove("./test_usdt_billing.db")

@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())

@pytest.fixture
def db_session() -> Session:
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

@pytest.fixture
def uid() -> str:
    return f"user_{uuid.uuid4().hex[:12]}"

@pytest.fixture
def auth_headers(uid):
    return {"Authorization": f"Bearer {create_access_token(uid)}"}

@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

@pytest.fixture
def make_user(db_session: Session):
    def _make(uid: str, **fields) -> User:
        values = dict(plan="free", credits_balance=0, monthly_credits_allowance=0, daily_credits_used=0)
        values.update(fields)
        user = User(id=uid, **values)
        db_session.add(user)
        db_session.commit()
        return user
    return _make
