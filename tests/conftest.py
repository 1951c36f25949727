"""
Pytest configuration and shared fixtures for the Secure Data API and LMP sync tests.
"""

import pytest
from fastapi.testclient import TestClient

from api import create_app
from securedata.blob_store import MemoryDocumentStore
from securedata.gateway import DataGateway
from securedata.permissions import PermissionTable

FIXED_NOW = "2025-02-05T12:00:00.000Z"

API_KEYS = {
    "admin": "ses-admin-abc123def456",
    "ae": "ses-ae-xyz",
    "widget": "ses-widget-w1",
    "workflow": "ses-workflow-wf1",
    "readonly": "ses-readonly-ro1",
}

ALLOWED_ORIGINS = ("https://portal.example.com", "https://staging.example.com")


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests that don't require external services")
    config.addinivalue_line("markers", "integration: Tests that drive the HTTP app end to end")


# =======================
# GATEWAY FIXTURES
# =======================

@pytest.fixture
def api_keys() -> dict:
    return dict(API_KEYS)


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def gateway(store: MemoryDocumentStore) -> DataGateway:
    """Gateway over the in-memory store with a frozen audit clock."""
    return DataGateway(
        store=store,
        permissions=PermissionTable.default(),
        valid_api_keys=API_KEYS.values(),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def client(gateway: DataGateway) -> TestClient:
    app = create_app(gateway=gateway, allowed_origins=ALLOWED_ORIGINS)
    return TestClient(app)
