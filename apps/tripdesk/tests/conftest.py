from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tripdesk.app import create_app
from tripdesk.backend import connect_backend
from tripdesk.config import Config
from tripdesk.models import ParticipantRecord, PaymentStatus
from tripdesk.services import ParticipantService


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config(tmp_path):
    class TestConfig(Config):
        SECRET_KEY = "test-secret"
        BACKEND_URL = "http://testserver"
        BACKEND_KEY = "test-anon-key"
        DB_PATH = str(tmp_path / "tripdesk.sqlite3")
        STORAGE_DIR = str(tmp_path / "storage")
        DEBUG = False

    return TestConfig


@pytest.fixture
def backend(config):
    backend = connect_backend(config)
    yield backend
    backend.close()


@pytest.fixture
def service(backend):
    return ParticipantService(backend)


@pytest.fixture
def client(config):
    app = create_app(config)
    with TestClient(app) as test_client:
        yield test_client


def make_record(**overrides) -> ParticipantRecord:
    data = {
        "full_name": "Wanjiru Kamau",
        "phone_number": "0712345678",
        "email": "wanjiru@example.com",
        "number_of_guests": 2,
        "payment_status": PaymentStatus.partial,
        "amount_paid": 1000,
        "avatar_url": "https://example.com/wanjiru.png",
    }
    data.update(overrides)
    return ParticipantRecord(**data)


def registration_data(**overrides) -> dict:
    data = {
        "full_name": "Jane Doe",
        "phone_number": "+254712345678",
        "email": "jane@example.com",
        "number_of_guests": "2",
        "payment_status": "paid",
        "amount_paid": "3000",
    }
    data.update(overrides)
    return data
