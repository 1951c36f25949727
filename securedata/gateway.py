"""
Secure Data API — CRUD gateway.

One call to ``DataGateway.handle`` is one HTTP request:

    authenticate (API key list)  →  validate route  →  authorize (permission table)
        →  read / create / update / delete  →  GatewayResponse

Nothing is kept between calls.  Writes are read-modify-write over a whole
document with no locking or version check, so concurrent writers to the same
document race and the last one wins.

Route semantics
---------------
GET     F        whole document
GET     F/R      one record of an array document
POST    F        append a record (object body, array document) or replace F
PUT     F        replace F with the body
PUT     F/R      merge body into record R
PATCH   F/R      same as PUT F/R
DELETE  F        delete the document
DELETE  F/R      remove every record matching R
"""

from __future__ import annotations

import json
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from securedata.errors import (
    AuthenticationError,
    AuthorizationError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from securedata.permissions import METHOD_OPERATIONS, Operation, PermissionTable
from securedata.records import find_record, remove_records
from securedata.roles import resolve_role

# Fields the gateway owns; a caller's update payload can never change them
IMMUTABLE_FIELDS: tuple[str, ...] = ("id", "createdAt", "createdBy")

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH = 9


def generate_record_id() -> str:
    """``<epoch-ms>-<9 base36 chars>``, e.g. ``1738771200000-k3j9x0a1b``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
    return f"{int(time.time() * 1000)}-{suffix}"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    now = datetime.now(tz=timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _reject_constant(name: str) -> Any:
    raise ValidationError(f"Request body must be valid JSON: {name} is not allowed.")


def parse_body(raw: bytes) -> Any:
    """Decode a request payload; empty means no body.  NaN and Infinity are rejected."""
    if not raw.strip():
        return None
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ValidationError(f"Request body must be valid JSON: {exc}") from exc


def body_missing(body: Any) -> bool:
    """
    True for no body and for the empty scalars ``false``, ``0`` and ``""``.

    Empty objects and arrays still count as a body.
    """
    if isinstance(body, (dict, list)):
        return False
    return not body


class CreatePlan(Enum):
    """What a POST does, decided from the body and the stored document's shape."""

    APPEND_TO_ARRAY = "append"
    REPLACE_WHOLE_FILE = "replace"


def plan_create(body: Any, existing: Any) -> CreatePlan:
    """
    Append only when an object body meets an array (or absent) document.

    Anything else, including an object posted to an object-typed document,
    replaces the whole file.  Long-standing behaviour; clients depend on it.
    """
    if isinstance(body, dict) and (existing is None or isinstance(existing, list)):
        return CreatePlan.APPEND_TO_ARRAY
    return CreatePlan.REPLACE_WHOLE_FILE


@dataclass
class GatewayResponse:
    status_code: int
    body: Any


class DataGateway:
    """
    Authenticated, permission-checked CRUD over named JSON documents.

    Parameters
    ----------
    store:
        Document store adapter (``get`` / ``put`` / ``delete``).
    permissions:
        The process-wide ``PermissionTable``.
    valid_api_keys:
        Keys accepted at all.  Membership here is checked before the key's
        role is looked up in the permission table.
    clock / id_factory:
        Sources for audit timestamps and generated record ids.
    """

    def __init__(
        self,
        store: Any,
        permissions: PermissionTable,
        valid_api_keys: Iterable[str],
        clock: Callable[[], str] = utc_timestamp,
        id_factory: Callable[[], str] = generate_record_id,
    ) -> None:
        self.store = store
        self.permissions = permissions
        self._valid_keys = frozenset(valid_api_keys)
        self._clock = clock
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Request entry point
    # ------------------------------------------------------------------

    def handle(
        self,
        method: str,
        api_key: Optional[str],
        filename: Optional[str],
        record_id: Optional[str] = None,
        body: Any = None,
        *,
        raw_body: Optional[bytes] = None,
    ) -> GatewayResponse:
        """
        Process one request and always return a response.

        ``body`` is the decoded JSON payload, ``None`` when the request had none.
        HTTP front ends pass the undecoded bytes as ``raw_body`` instead, so a
        malformed payload is only reported to callers that passed auth.
        ``GatewayError`` subclasses become their own status; any other
        exception becomes a 500 carrying the exception message.
        """
        method = method.upper()
        try:
            role = self.authenticate(api_key)
            if not filename:
                raise ValidationError("Filename required.")
            self.authorize(role, filename, method)
            if raw_body is not None:
                body = parse_body(raw_body)
            logger.info(
                "{} {}{} | role={}",
                method, filename, f"/{record_id}" if record_id else "", role,
            )

            if method == "GET":
                return self._read(filename, record_id)
            if method == "POST":
                return self._create(role, filename, body)
            if method == "PUT":
                if record_id:
                    return self._update(role, filename, record_id, body)
                return self._replace(filename, body)
            if method == "PATCH":
                if not record_id:
                    raise ValidationError("Record id required for PATCH.")
                return self._update(role, filename, record_id, body)
            if record_id:
                return self._delete_record(filename, record_id)
            return self._delete_document(filename)

        except GatewayError as exc:
            if exc.status_code >= 500:
                logger.error("{} {} failed: {}", method, filename, exc.message)
            else:
                logger.info("{} {} → {} {}", method, filename, exc.status_code, exc.message)
            return GatewayResponse(exc.status_code, exc.to_body())
        except Exception as exc:
            logger.exception("Unhandled error on {} {}: {}", method, filename, exc)
            return GatewayResponse(500, {"error": "Server Error", "message": str(exc)})

    # ------------------------------------------------------------------
    # Authentication / authorization
    # ------------------------------------------------------------------

    def authenticate(self, api_key: Optional[str]) -> Optional[str]:
        """Return the key's role; raise if the key is missing or not accepted."""
        if not api_key or api_key not in self._valid_keys:
            raise AuthenticationError("Valid API key required.")
        return resolve_role(api_key)

    def authorize(self, role: Optional[str], filename: str, method: str) -> Operation:
        operation = METHOD_OPERATIONS.get(method)
        if operation is None:
            raise ValidationError(f"Unsupported method {method}.")
        if not self.permissions.is_allowed(role, filename, operation):
            logger.warning("Denied {} on {} for role={}", operation.value, filename, role)
            raise AuthorizationError(f"Your API key cannot {operation.value} {filename}.")
        return operation

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _read(self, filename: str, record_id: Optional[str]) -> GatewayResponse:
        data = self.store.get(filename)
        if data is None:
            raise NotFoundError(f"{filename} not found.")

        # A record id against a non-array document falls through to the whole file
        if record_id and isinstance(data, list):
            idx = find_record(data, record_id)
            if idx is None:
                raise NotFoundError(f"Record {record_id} not found.")
            return GatewayResponse(200, data[idx])

        return GatewayResponse(200, data)

    def _create(self, role: Optional[str], filename: str, body: Any) -> GatewayResponse:
        if body_missing(body):
            raise ValidationError("Request body required.")

        existing = self.store.get(filename) if isinstance(body, dict) else None
        plan = plan_create(body, existing)

        if plan is CreatePlan.APPEND_TO_ARRAY:
            records = existing if existing is not None else []
            record = {
                **body,
                "id": body.get("id") or self._id_factory(),
                "createdAt": self._clock(),
                "createdBy": role,
            }
            records.append(record)
            self.store.put(filename, records)
            logger.info("Created record {} in {} ({} records).", record["id"], filename, len(records))
            return GatewayResponse(
                201, {"success": True, "message": "Record created.", "record": record}
            )

        if isinstance(body, dict):
            logger.warning(
                "POST object to non-array {}: replacing the whole document.", filename
            )
        self.store.put(filename, body)
        return GatewayResponse(201, {"success": True, "message": "File saved."})

    def _replace(self, filename: str, body: Any) -> GatewayResponse:
        if body_missing(body):
            raise ValidationError("Request body required.")
        self.store.put(filename, body)
        return GatewayResponse(
            200, {"success": True, "message": "File replaced", "filename": filename}
        )

    def _update(
        self, role: Optional[str], filename: str, record_id: str, body: Any
    ) -> GatewayResponse:
        if body_missing(body):
            raise ValidationError("Request body required.")
        if not isinstance(body, dict):
            raise ValidationError("Record update body must be a JSON object.")

        records = self.store.get(filename)
        if not isinstance(records, list):
            raise ValidationError("File is not an array.")

        idx = find_record(records, record_id)
        if idx is None:
            raise NotFoundError(f"Record {record_id} not found.")

        current = records[idx]
        updated = {**current, **body}
        for field in IMMUTABLE_FIELDS:
            if field in current:
                updated[field] = current[field]
            else:
                updated.pop(field, None)
        updated["updatedAt"] = self._clock()
        updated["updatedBy"] = role

        records[idx] = updated
        self.store.put(filename, records)
        return GatewayResponse(
            200, {"success": True, "message": "Record updated.", "record": updated}
        )

    def _delete_record(self, filename: str, record_id: str) -> GatewayResponse:
        records = self.store.get(filename)
        if not isinstance(records, list):
            raise ValidationError("Cannot delete record from non-array.")

        remaining, removed = remove_records(records, record_id)
        if not removed:
            raise NotFoundError(f"Record {record_id} not found.")

        self.store.put(filename, remaining)
        logger.info(
            "Deleted {} record(s) matching {} from {}.",
            len(records) - len(remaining), record_id, filename,
        )
        return GatewayResponse(200, {"success": True, "message": "Record deleted."})

    def _delete_document(self, filename: str) -> GatewayResponse:
        if not self.store.delete(filename):
            raise NotFoundError(f"{filename} not found.")
        logger.info("Deleted document {}.", filename)
        return GatewayResponse(200, {"success": True, "message": "File deleted."})
