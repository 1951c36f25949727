"""
Unit tests for the Secure Data API client used by the updater.
"""

from unittest.mock import MagicMock

import pytest
import requests

from lmp_sync.data_api import DataApiClient, DataApiError


def response(status=200, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = text
    return resp


@pytest.fixture
def api():
    client = DataApiClient("https://gw.example.com/api/data/", "ses-workflow-wf1")
    client._session = MagicMock()
    return client


@pytest.mark.unit
class TestDataApiClient:

    def test_requires_endpoint_and_key(self):
        with pytest.raises(DataApiError):
            DataApiClient("", "key")
        with pytest.raises(DataApiError):
            DataApiClient("https://gw.example.com/api/data", "")

    def test_sends_key_header(self):
        client = DataApiClient("https://gw.example.com/api/data", "ses-workflow-wf1")
        assert client._session.headers["x-api-key"] == "ses-workflow-wf1"

    def test_get_document(self, api):
        api._session.request.return_value = response(body={"data": {}})
        assert api.get_document("lmp-database.json") == {"data": {}}
        args, kwargs = api._session.request.call_args
        assert args == ("GET", "https://gw.example.com/api/data/lmp-database.json")
        assert kwargs["json"] is None

    def test_get_missing_is_none(self, api):
        api._session.request.return_value = response(status=404, text='{"error":"Not Found"}')
        assert api.get_document("lmp-database.json") is None

    def test_get_other_error_raises(self, api):
        api._session.request.return_value = response(status=403, text="Forbidden")
        with pytest.raises(DataApiError) as exc_info:
            api.get_document("lmp-database.json")
        assert exc_info.value.status_code == 403

    def test_transport_error_raises(self, api):
        api._session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(DataApiError) as exc_info:
            api.get_document("lmp-database.json")
        assert exc_info.value.status_code is None

    def test_put_document(self, api):
        api._session.request.return_value = response(status=200)
        api.put_document("lmp-database.json", {"data": {"PJM": []}})
        args, kwargs = api._session.request.call_args
        assert args[0] == "PUT"
        assert kwargs["json"] == {"data": {"PJM": []}}

    def test_put_failure_raises(self, api):
        api._session.request.return_value = response(status=500, text="boom")
        with pytest.raises(DataApiError, match="500"):
            api.put_document("lmp-database.json", {})
