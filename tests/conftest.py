from io import BytesIO

import fakeredis
import openpyxl
import pytest
from fastapi.testclient import TestClient

from auth import ADMIN, MANAGER, SharedSecretAuthenticator, get_authenticator
from main import app
from services import get_redis

ADMIN_PASSWORD = "admin-test-pass"
MANAGER_PASSWORD = "manager-test-pass"

ISSUE_FIELDS = {
    "applicant": "Alice",
    "customer_name": "ACME Corp",
    "customer_requirement": "Firmware port",
    "machine_type": "X200",
    "start_date": "2026-10-01",
    "expected_completion_date": "2026-11-15",
}

ISSUE_BODY = {
    "applicant": "Alice",
    "customerName": "ACME Corp",
    "customerRequirement": "Firmware port",
    "machineType": "X200",
    "startDate": "2026-10-01",
    "expectedCompletionDate": "2026-11-15",
}


@pytest.fixture
def r():
    """A fresh in-memory Redis for each test."""
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    yield client
    client.flushall()


@pytest.fixture
def authenticator():
    return SharedSecretAuthenticator({ADMIN: ADMIN_PASSWORD, MANAGER: MANAGER_PASSWORD})


@pytest.fixture
def client(r, authenticator):
    """Test client wired to the fake Redis and known passwords."""
    app.dependency_overrides[get_redis] = lambda: r
    app.dependency_overrides[get_authenticator] = lambda: authenticator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Password": ADMIN_PASSWORD}


@pytest.fixture
def manager_headers():
    return {"X-Manager-Password": MANAGER_PASSWORD}


def make_xlsx(rows):
    """Build an .xlsx file in memory from a list of rows (first row = headers)."""
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
