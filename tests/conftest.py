import json
from unittest.mock import Mock

import pytest
import requests

from plugin_dashboard.cache import LocalStore
from plugin_dashboard.config import DashboardConfig
from plugin_dashboard.context import DashboardContext


def make_response(status=200, body=None, text=None, reason="OK"):
    """Build a real requests.Response carrying the given body."""
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    if text is None:
        text = json.dumps(body) if body is not None else ""
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    return response


@pytest.fixture
def store(tmp_path):
    with LocalStore(str(tmp_path / "cache.db")) as local_store:
        yield local_store


@pytest.fixture
def config():
    return DashboardConfig(secret_key="test-secret")


@pytest.fixture
def context(store, config):
    return DashboardContext(store, config).load()


@pytest.fixture
def session():
    mock_session = Mock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def respond():
    return make_response
