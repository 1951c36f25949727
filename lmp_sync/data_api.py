"""
LMP Sync — client for the Secure Data API.

Used by the updater to read and write whole documents.  A 404 on read is a
normal "document does not exist yet" answer and comes back as ``None``.
"""

from __future__ import annotations

from typing import Any, Optional

import requests
from loguru import logger

REQUEST_TIMEOUT = 120.0   # the LMP database is several MB


class DataApiError(RuntimeError):
    """The gateway answered with a non-2xx status (other than 404 on read)."""

    def __init__(self, status_code: Optional[int], message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataApiClient:
    """
    Parameters
    ----------
    endpoint:
        Base URL ending in ``/api/data``.
    api_key:
        Key sent as ``x-api-key``; its role needs read/write on the documents used.
    """

    def __init__(self, endpoint: str, api_key: str, timeout: float = REQUEST_TIMEOUT) -> None:
        if not endpoint:
            raise DataApiError(None, "DATA_API_ENDPOINT is not set.")
        if not api_key:
            raise DataApiError(None, "DATA_API_KEY is not set.")
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"x-api-key": api_key, "Accept": "application/json"})

    def _url(self, name: str) -> str:
        return f"{self._endpoint}/{name}"

    def _request(self, method: str, name: str, payload: Any = None) -> requests.Response:
        try:
            resp = self._session.request(
                method, self._url(name), json=payload, timeout=self._timeout
            )
        except requests.exceptions.RequestException as exc:
            logger.error("{} {} failed: {}", method, name, exc)
            raise DataApiError(None, f"{method} {name} failed: {exc}") from exc
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response, method: str, name: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        snippet = resp.text[:300]
        logger.error("{} {} → {}: {}", method, name, resp.status_code, snippet)
        raise DataApiError(resp.status_code, f"API returned {resp.status_code}: {snippet}")

    def get_document(self, name: str) -> Optional[Any]:
        """Whole document, or ``None`` when the gateway reports 404."""
        resp = self._request("GET", name)
        if resp.status_code == 404:
            logger.info("{} does not exist yet.", name)
            return None
        self._raise_for_status(resp, "GET", name)
        try:
            return resp.json()
        except ValueError as exc:
            raise DataApiError(resp.status_code, f"{name} is not valid JSON: {exc}") from exc

    def put_document(self, name: str, document: Any) -> None:
        """Replace the whole document."""
        resp = self._request("PUT", name, document)
        self._raise_for_status(resp, "PUT", name)
        logger.info("{} saved ({}).", name, resp.status_code)
