"""
Async client for the remote source store (Atelier REST API).

Only the four operations the import/compile cycle needs are exposed:
put a document, get a document, compile, and list dependents ("others").
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import RemoteStoreError

logger = logging.getLogger(__name__)


def _status_errors(payload: Dict[str, Any]) -> List[Any]:
    status = payload.get("status") or {}
    return list(status.get("errors") or [])


class AtelierClient:
    """Thin wrapper over httpx.AsyncClient bound to one server namespace."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        conn = settings.conn
        auth = None
        if conn.username is not None:
            auth = httpx.BasicAuth(conn.username, conn.password or "")
        self.namespace = conn.namespace
        self._http = httpx.AsyncClient(
            base_url=conn.base_url,
            auth=auth,
            timeout=settings.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AtelierClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}", cause=e) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            raise RemoteStoreError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                errors=_status_errors(payload),
            )
        return payload

    def _doc_path(self, name: str) -> str:
        return f"doc/{quote(name)}"

    async def put_doc(self, name: str, content: List[str], ignore_conflict: bool = True) -> Dict[str, Any]:
        params = {"ignoreConflict": 1} if ignore_conflict else None
        payload = await self._request(
            "PUT",
            self._doc_path(name),
            params=params,
            json={"enc": False, "content": content},
        )
        errors = _status_errors(payload)
        if errors:
            raise RemoteStoreError(f"{name}: import rejected", errors=errors)
        logger.debug("put %s (%d lines)", name, len(content))
        return payload.get("result") or {}

    async def get_doc(self, name: str) -> List[str]:
        payload = await self._request("GET", self._doc_path(name))
        errors = _status_errors(payload)
        if errors:
            raise RemoteStoreError(f"{name}: fetch rejected", errors=errors)
        result = payload.get("result") or {}
        return list(result.get("content") or [])

    async def compile(self, names: Sequence[str], flags: str) -> List[Any]:
        """Compile documents (or namespace patterns); returns the compiler errors, empty on success."""
        payload = await self._request(
            "POST",
            "action/compile",
            params={"flags": flags},
            json=list(names),
        )
        return _status_errors(payload)

    async def index(self, names: Sequence[str]) -> List[str]:
        """Documents generated from the first of `names` (the "others")."""
        payload = await self._request("POST", "action/index", json=list(names))
        errors = _status_errors(payload)
        if errors:
            raise RemoteStoreError("index rejected", errors=errors)
        content = (payload.get("result") or {}).get("content") or []
        if not content:
            return []
        return list(content[0].get("others") or [])
