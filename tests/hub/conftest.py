"""Shared fixtures for tests/hub/: a real ChartHub over a fake HA client."""

import pytest
from fastapi.testclient import TestClient

from hachart.engine.config import AppConfig
from hachart.hub.api import create_api
from hachart.hub.core import ChartHub


@pytest.fixture
def api_hub(ha_client, store):
    """ChartHub seeded with the shared ``store`` snapshot."""
    hub = ChartHub(AppConfig(), client=ha_client)
    hub.store = store
    return hub


@pytest.fixture
def api_client(api_hub):
    """FastAPI TestClient backed by api_hub."""
    return TestClient(create_api(api_hub))
