from __future__ import annotations

import os
import pathlib
import sys
import tempfile
import uuid
from datetime import date
from typing import Iterator

import pytest

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

_DB_DIR = tempfile.mkdtemp(prefix="contract-api-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["EMAIL_BACKEND"] = "console"
os.environ["NOTIFICATION_SWEEP_ENABLED"] = "false"
os.environ["INTERNAL_API_TOKEN"] = ""
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_REGION"] = "eu-central-1"
os.environ.pop("S3_ENDPOINT_URL", None)

from fastapi.testclient import TestClient  # noqa: E402

from api.config import settings  # noqa: E402
from api.db.session import SessionLocal, get_engine  # noqa: E402
from api.main import app  # noqa: E402
from api.models.base import Base  # noqa: E402
from api.services.auth import AuthService  # noqa: E402
from api.services.contract_extract import ContractAnalysis, ContractExtractor  # noqa: E402
from api.services.email import EmailClient, EmailMessage  # noqa: E402
from api.services.exceptions import EmailDeliveryError, ExtractorError, StorageError  # noqa: E402
from api.services.storage import StoredFile  # noqa: E402

Base.metadata.create_all(bind=get_engine())


class FakeExtractor(ContractExtractor):
    """Deterministic extractor; flip ``fail`` to simulate an outage."""

    def __init__(self, *, fail: bool = False, notice_deadline: date | None = None) -> None:
        self.fail = fail
        self.notice_deadline = notice_deadline
        self.calls: list[str] = []

    def extract(self, content: bytes, filename: str, content_type: str) -> ContractAnalysis:
        self.calls.append(filename)
        if self.fail:
            raise ExtractorError("extractor unavailable")
        return ContractAnalysis(
            contract_type="mobile",
            provider="Acme Mobile",
            summary=f"Mobile contract from {filename}",
            monthly_cost=29.99,
            currency="EUR",
            minimum_term_months=24,
            notice_period="3 months",
            notice_deadline=self.notice_deadline,
            auto_renewal=True,
            key_terms=["24 month minimum term"],
            confidence=0.9,
        )


class FakeStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def upload_bytes(self, user_id, content: bytes, filename: str, content_type: str) -> StoredFile:
        key = f"contracts/{user_id}/{uuid.uuid4()}{pathlib.Path(filename).suffix.lower() or '.bin'}"
        self.objects[key] = content
        return StoredFile(key=key, storage_url=f"memory://{key}")

    def read_bytes(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError as exc:
            raise StorageError(f"missing object {key}") from exc

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


class DummyEmailClient(EmailClient):
    def __init__(self, *, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        if message.to in self.fail_for:
            raise EmailDeliveryError(f"transport rejected {message.to}")
        self.sent.append(message)


@pytest.fixture(scope="session")
def client() -> Iterator[TestClient]:
    """Provide a FastAPI TestClient instance."""
    with TestClient(app) as _client:
        yield _client


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def user(db_session):
    user = AuthService(db_session).get_or_create_user(f"owner+{uuid.uuid4().hex[:8]}@example.com", "en")
    db_session.commit()
    return user


@pytest.fixture()
def other_user(db_session):
    user = AuthService(db_session).get_or_create_user(f"other+{uuid.uuid4().hex[:8]}@example.com", "de")
    db_session.commit()
    return user


@pytest.fixture()
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def email_client() -> DummyEmailClient:
    return DummyEmailClient()


@pytest.fixture()
def auth_context(client: TestClient) -> Iterator[dict[str, str]]:
    """Create an authenticated session and attach cookie to the client."""
    with SessionLocal() as session:
        service = AuthService(session)
        user = service.get_or_create_user("owner@example.com", "en")
        token = service.create_session(user, user_agent="pytest")
        session.commit()
        user_id = str(user.id)

    client.cookies.set(settings.cookie_name, token)
    try:
        yield {"user_id": user_id, "token": token}
    finally:
        client.cookies.clear()


@pytest.fixture(autouse=True)
def cleanup_database() -> Iterator[None]:
    """Empty every table after each test to keep isolation."""
    yield
    with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
