"""Shared test fixtures for ledger gateway tests."""

import base64
import json
import sys
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import FieldDefinition  # noqa: E402


class FakeSheets:
    """In-memory stand-in for SheetsClient.

    Tabs start with a header row, and appends report an ``updatedRange`` the
    way the provider does, so row ordinals are derived the real way.
    """

    def __init__(self, tabs: dict[str, list[list[str]]] | None = None):
        self.tabs = tabs if tabs is not None else {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str, list[list[str]] | None]] = []

    async def append(self, sheet_id: str, tab_name: str, rows: list[list[str]]) -> dict:
        self.calls.append(("append", tab_name, rows))
        if tab_name in self.failures:
            raise self.failures[tab_name]
        values = self.tabs.setdefault(tab_name, [["Header"]])
        first = len(values) + 1
        values.extend(rows)
        last = len(values)
        return {"updatedRange": f"'{tab_name}'!A{first}:G{last}"}

    async def read(self, sheet_id: str, tab_name: str) -> dict:
        self.calls.append(("read", tab_name, None))
        if tab_name in self.failures:
            raise self.failures[tab_name]
        return {"values": [list(row) for row in self.tabs.get(tab_name, [])]}


@pytest.fixture
def fake_sheets() -> FakeSheets:
    """Spreadsheet with header rows only, matching a freshly set-up ledger."""
    return FakeSheets({
        "Records": [["Timestamp", "Name", "ID", "Foreman", "Date", "Submitted By", "Status"]],
        "Upload Log": [["Timestamp", "File", "Status", "Submitted By"]],
        "Update Requests": [["Timestamp", "Original Row", "Requested By", "Description", "Status", "Resolved By", "Resolved At"]],
    })


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Throwaway signing key for assertion tests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def service_account_json(private_key_pem: str) -> str:
    return json.dumps({
        "type": "service_account",
        "client_email": "ledger-writer@example-project.iam.gserviceaccount.com",
        "private_key": private_key_pem,
        "token_uri": "https://oauth2.googleapis.com/token",
    })


@pytest.fixture
def field_definitions() -> list[FieldDefinition]:
    return [
        FieldDefinition(name="worker_name", label="Name", type="text"),
        FieldDefinition(name="worker_id", label="ID", type="text"),
        FieldDefinition(name="foreman", label="Foreman", type="text"),
        FieldDefinition(name="entry_date", label="Date", type="date"),
    ]


@pytest.fixture
def worker_fields() -> list[FieldDefinition]:
    return [
        FieldDefinition(name="worker_name", label="Name", type="text"),
        FieldDefinition(name="worker_id", label="ID", type="text"),
        FieldDefinition(name="signature", label="Signature", type="text", required=False),
    ]


@pytest.fixture
def header_fields() -> list[FieldDefinition]:
    return [
        FieldDefinition(name="foreman", label="Foreman", type="text"),
        FieldDefinition(name="entry_date", label="Date", type="date"),
    ]


@pytest.fixture
def sample_image_b64() -> str:
    """A small base64 payload; content is irrelevant since the model is mocked."""
    return base64.b64encode(b"\xff\xd8\xff\xe0" + b"\x00" * 512).decode()


@pytest.fixture
def mock_flat_response() -> str:
    """Mock model reply for a flat sign-in form."""
    return json.dumps([
        {"field_name": "worker_name", "extracted_value": "Jane Doe", "confidence": 0.93},
        {"field_name": "worker_id", "extracted_value": "WK-1042", "confidence": 0.88},
        {"field_name": "foreman", "extracted_value": "Mike Johnson", "confidence": 0.71},
        {"field_name": "entry_date", "extracted_value": "2026-10-18", "confidence": 0.95},
    ])


@pytest.fixture
def mock_prose_response(mock_flat_response: str) -> str:
    """Mock model reply with explanation around the JSON array."""
    return f"Here is the extracted data from the form:\n\n{mock_flat_response}\n\nLet me know if you need anything else."


@pytest.fixture
def mock_row_response() -> str:
    """Mock model reply for a sign-in sheet with a header and worker rows."""
    return json.dumps({
        "header": {"foreman": "Mike Johnson", "entry_date": "2026-10-18"},
        "workers": [
            {"worker_name": "Jane Doe", "worker_id": "WK-1042", "signature": "JD"},
            {"worker_name": "", "worker_id": None, "signature": ""},
            {"worker_name": "Sam Lee", "worker_id": "", "signature": None},
        ],
    })
