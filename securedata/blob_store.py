"""
Secure Data API — document store adapters.

A *document* is one named JSON blob.  Adapters expose three calls:

    get(name)          -> decoded JSON, or None when the blob does not exist
    put(name, doc)     -> overwrite unconditionally (last writer wins)
    delete(name)       -> True if the blob existed and was removed

No caching and no retries: backend failures surface immediately as
``StoreError`` and the gateway turns them into a 500.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContainerClient, ContentSettings
from loguru import logger

from securedata.config import GatewaySettings
from securedata.errors import StoreError

JSON_CONTENT_TYPE = "application/json"


def encode_document(document: Any) -> str:
    """Pretty-printed standard JSON, the on-disk format for every document."""
    try:
        return json.dumps(document, indent=2, ensure_ascii=False, allow_nan=False)
    except ValueError as exc:
        raise StoreError(f"Document is not storable as JSON: {exc}") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard constant {name}")


def decode_document(name: str, raw: bytes | str) -> Any:
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError as exc:
        raise StoreError(f"{name} does not contain valid JSON: {exc}") from exc


# ---------------------------------------------------------------------------
# Azure Blob Storage
# ---------------------------------------------------------------------------


class BlobDocumentStore:
    """
    Documents stored as block blobs inside a single Azure container.

    Parameters
    ----------
    container_client:
        An ``azure.storage.blob.ContainerClient`` for the data container.
    """

    backend = "azure"

    def __init__(self, container_client: ContainerClient) -> None:
        self._container = container_client

    @classmethod
    def from_connection_string(cls, connection_string: str, container: str) -> "BlobDocumentStore":
        if not connection_string:
            raise StoreError("AZURE_STORAGE_CONNECTION_STRING is not configured.")
        try:
            service = BlobServiceClient.from_connection_string(connection_string)
        except (AzureError, ValueError) as exc:
            raise StoreError(f"Invalid storage connection string: {exc}") from exc
        logger.info("Blob store bound to container '{}'.", container)
        return cls(service.get_container_client(container))

    def get(self, name: str) -> Optional[Any]:
        try:
            raw = self._container.download_blob(name).readall()
        except ResourceNotFoundError:
            logger.debug("Blob {} does not exist.", name)
            return None
        except AzureError as exc:
            logger.error("Blob read failed for {}: {}", name, exc)
            raise StoreError(f"Failed to read {name}: {exc}") from exc
        return decode_document(name, raw)

    def put(self, name: str, document: Any) -> None:
        content = encode_document(document).encode("utf-8")
        try:
            self._container.upload_blob(
                name,
                content,
                overwrite=True,
                content_settings=ContentSettings(content_type=JSON_CONTENT_TYPE),
            )
        except AzureError as exc:
            logger.error("Blob write failed for {}: {}", name, exc)
            raise StoreError(f"Failed to save {name}: {exc}") from exc
        logger.debug("Blob {} saved ({} bytes).", name, len(content))

    def delete(self, name: str) -> bool:
        try:
            self._container.delete_blob(name)
        except ResourceNotFoundError:
            return False
        except AzureError as exc:
            logger.error("Blob delete failed for {}: {}", name, exc)
            raise StoreError(f"Failed to delete {name}: {exc}") from exc
        return True


# ---------------------------------------------------------------------------
# In-process store  (local development)
# ---------------------------------------------------------------------------


class MemoryDocumentStore:
    """
    Process-local store holding each document as its serialized JSON text.

    Keeping text rather than live objects means callers can never mutate a
    stored document except through ``put``, the same as with a real blob.
    """

    backend = "memory"

    def __init__(self, documents: Optional[dict[str, Any]] = None) -> None:
        self._blobs: dict[str, str] = {}
        self._lock = threading.Lock()
        for name, document in (documents or {}).items():
            self.put(name, document)

    def get(self, name: str) -> Optional[Any]:
        with self._lock:
            raw = self._blobs.get(name)
        return None if raw is None else decode_document(name, raw)

    def put(self, name: str, document: Any) -> None:
        content = encode_document(document)
        with self._lock:
            self._blobs[name] = content

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._blobs.pop(name, None) is not None

    def raw(self, name: str) -> Optional[str]:
        """Stored text for *name*, exactly as written."""
        with self._lock:
            return self._blobs.get(name)


def build_store(settings: GatewaySettings) -> BlobDocumentStore | MemoryDocumentStore:
    """Create the store selected by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory document store; data is lost on restart.")
        return MemoryDocumentStore()
    return BlobDocumentStore.from_connection_string(
        settings.connection_string, settings.container
    )
