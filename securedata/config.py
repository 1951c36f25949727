"""
Secure Data API — process configuration.

Read once from the environment (``.env`` supported via python-dotenv) into an
immutable settings value.  Nothing here is re-read or mutated per request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONTAINER = "secure-data"
STORE_BACKENDS = ("azure", "memory")


def _split_csv(raw: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated env value, trimming blanks and dropping empties."""
    return tuple(part.strip() for part in (raw or "").split(",") if part.strip())


@dataclass(frozen=True)
class GatewaySettings:
    connection_string: str = ""
    container: str = DEFAULT_CONTAINER
    valid_api_keys: tuple[str, ...] = ()
    allowed_origins: tuple[str, ...] = ()
    store_backend: str = "azure"
    permissions_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        backend = os.getenv("DATA_STORE", "azure").strip().lower() or "azure"
        if backend not in STORE_BACKENDS:
            raise ValueError(
                f"DATA_STORE must be one of {', '.join(STORE_BACKENDS)}; got {backend!r}"
            )
        return cls(
            connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING", ""),
            container=os.getenv("DATA_CONTAINER", DEFAULT_CONTAINER) or DEFAULT_CONTAINER,
            valid_api_keys=_split_csv(os.getenv("VALID_API_KEYS")),
            allowed_origins=_split_csv(os.getenv("ALLOWED_ORIGINS")),
            store_backend=backend,
            permissions_file=os.getenv("PERMISSIONS_FILE") or None,
        )
