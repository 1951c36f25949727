"""
Unit tests for the document store adapters.  The Azure container client is mocked.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from securedata.blob_store import (
    BlobDocumentStore,
    MemoryDocumentStore,
    build_store,
    encode_document,
)
from securedata.config import GatewaySettings
from securedata.errors import StoreError


@pytest.fixture
def container():
    return MagicMock()


@pytest.fixture
def blob_store(container):
    return BlobDocumentStore(container)


@pytest.mark.unit
class TestBlobDocumentStore:

    def test_get_decodes_json(self, blob_store, container):
        container.download_blob.return_value.readall.return_value = b'[{"id": "a"}]'
        assert blob_store.get("clients.json") == [{"id": "a"}]
        container.download_blob.assert_called_once_with("clients.json")

    def test_get_missing_blob_is_none(self, blob_store, container):
        container.download_blob.side_effect = ResourceNotFoundError("gone")
        assert blob_store.get("clients.json") is None

    def test_get_backend_failure(self, blob_store, container):
        container.download_blob.side_effect = HttpResponseError("503 busy")
        with pytest.raises(StoreError, match="Failed to read clients.json"):
            blob_store.get("clients.json")

    def test_get_corrupt_json(self, blob_store, container):
        container.download_blob.return_value.readall.return_value = b"{oops"
        with pytest.raises(StoreError, match="not contain valid JSON"):
            blob_store.get("clients.json")

    def test_put_overwrites_pretty_json(self, blob_store, container):
        blob_store.put("tickets.json", [{"id": "t1", "title": "Café"}])
        args, kwargs = container.upload_blob.call_args
        assert args[0] == "tickets.json"
        assert args[1].decode("utf-8") == encode_document([{"id": "t1", "title": "Café"}])
        assert b"\n  " in args[1]
        assert kwargs["overwrite"] is True
        assert kwargs["content_settings"].content_type == "application/json"

    def test_put_refuses_non_finite_numbers(self, blob_store, container):
        with pytest.raises(StoreError, match="not storable"):
            blob_store.put("tickets.json", [{"x": float("nan")}])
        container.upload_blob.assert_not_called()

    def test_get_refuses_non_standard_json(self, blob_store, container):
        container.download_blob.return_value.readall.return_value = b'{"x": NaN}'
        with pytest.raises(StoreError, match="not contain valid JSON"):
            blob_store.get("tickets.json")

    def test_put_failure(self, blob_store, container):
        container.upload_blob.side_effect = HttpResponseError("403")
        with pytest.raises(StoreError):
            blob_store.put("tickets.json", [])

    def test_delete(self, blob_store, container):
        assert blob_store.delete("tickets.json") is True
        container.delete_blob.assert_called_once_with("tickets.json")

    def test_delete_missing(self, blob_store, container):
        container.delete_blob.side_effect = ResourceNotFoundError("gone")
        assert blob_store.delete("tickets.json") is False

    def test_delete_failure(self, blob_store, container):
        container.delete_blob.side_effect = HttpResponseError("500")
        with pytest.raises(StoreError):
            blob_store.delete("tickets.json")

    def test_requires_connection_string(self):
        with pytest.raises(StoreError):
            BlobDocumentStore.from_connection_string("", "secure-data")

    def test_from_connection_string_binds_container(self):
        with patch("securedata.blob_store.BlobServiceClient") as service_cls:
            store = BlobDocumentStore.from_connection_string("UseDevelopmentStorage=true", "secure-data")
        service_cls.from_connection_string.assert_called_once_with("UseDevelopmentStorage=true")
        service_cls.from_connection_string.return_value.get_container_client.assert_called_once_with(
            "secure-data"
        )
        assert store.backend == "azure"


@pytest.mark.unit
class TestMemoryDocumentStore:

    def test_round_trip_and_isolation(self):
        store = MemoryDocumentStore()
        doc = [{"id": "a"}]
        store.put("x.json", doc)
        doc.append({"id": "b"})
        loaded = store.get("x.json")
        assert loaded == [{"id": "a"}]
        loaded.append({"id": "c"})
        assert store.get("x.json") == [{"id": "a"}]

    def test_seed_and_delete(self):
        store = MemoryDocumentStore({"a.json": {"k": 1}})
        assert json.loads(store.raw("a.json")) == {"k": 1}
        assert store.delete("a.json") is True
        assert store.delete("a.json") is False
        assert store.get("a.json") is None


@pytest.mark.unit
def test_build_store_memory_backend():
    store = build_store(GatewaySettings(store_backend="memory"))
    assert isinstance(store, MemoryDocumentStore)


@pytest.mark.unit
def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("VALID_API_KEYS", " ses-admin-1 , ,ses-ae-2")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example.com,https://b.example.com")
    monkeypatch.setenv("DATA_STORE", "memory")
    monkeypatch.delenv("DATA_CONTAINER", raising=False)
    settings = GatewaySettings.from_env()
    assert settings.valid_api_keys == ("ses-admin-1", "ses-ae-2")
    assert settings.allowed_origins == ("https://a.example.com", "https://b.example.com")
    assert settings.container == "secure-data"
    assert settings.store_backend == "memory"


@pytest.mark.unit
def test_settings_reject_unknown_backend(monkeypatch):
    monkeypatch.setenv("DATA_STORE", "s3")
    with pytest.raises(ValueError):
        GatewaySettings.from_env()
