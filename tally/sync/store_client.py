"""
Store synchronizer - participant side of the poll/store design.

Talks to the REST API with a shared httpx.AsyncClient. Nothing is pushed:
the participant polls for changes made by other devices.
"""

import json
import logging
from typing import Any, Optional

import httpx

from tally.reconcile.classifier import Decision
from tally.reconcile.errors import (
    CodeSpaceExhausted,
    InvalidInput,
    SessionNotFound,
    TallyError,
    TransientNetworkError,
)
from tally.reconcile.models import Catalog, Session

from .base import Synchronizer, decision_from_wire

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class StoreSynchronizer(Synchronizer):
    """
    REST client for /api/*.

    Args:
        base_url: Server root, e.g. "http://192.168.1.20:8000"
        timeout: Per-request timeout in seconds
        client: Pre-built client (tests pass one with a mock or ASGI transport)
    """

    def __init__(self, base_url: str = "", timeout: float = DEFAULT_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, session_id: Optional[str] = None,
                       body: Any = None, params: Optional[dict] = None) -> dict:
        """
        Send one request and decode the JSON body.

        Maps transport failures and error statuses onto the domain errors.
        """
        kwargs: dict[str, Any] = {"params": params}
        if body is not None:
            # Spreadsheet cells may hold dates; send them as text
            kwargs["content"] = json.dumps(body, default=str, ensure_ascii=False)
            kwargs["headers"] = {"Content-Type": "application/json"}

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"{method} {path} failed: {e}")

        if resp.status_code < 400:
            return resp.json()

        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        if not isinstance(detail, str):
            detail = json.dumps(detail)

        if resp.status_code == 404:
            raise SessionNotFound(session_id or "")
        if resp.status_code in (400, 422):
            raise InvalidInput(detail)
        if resp.status_code == 503:
            raise CodeSpaceExhausted(detail)
        if resp.status_code >= 500:
            raise TransientNetworkError(f"Server error {resp.status_code}: {detail}")
        raise TallyError(f"Unexpected status {resp.status_code}: {detail}")

    async def create_session(self, catalog: Catalog) -> Session:
        data = await self._request("POST", "/api/upload", body={"catalog": catalog.to_dict()})
        code = data["code"]
        logger.info(f"Published catalog as session {code} ({data.get('itemCount')} items)")
        return await self.poll(code)

    async def join(self, session_id: str) -> Session:
        return await self.poll(session_id)

    async def poll(self, session_id: str) -> Session:
        data = await self._request("GET", "/api/session", session_id, params={"code": session_id})
        return Session.from_dict(data["session"])

    async def submit_scan(self, session_id: str, code: str) -> Decision:
        data = await self._request(
            "POST", "/api/scan", session_id,
            body={"code": session_id, "scannedCode": code},
        )
        return decision_from_wire(data, code)

    async def publish_catalog(self, session_id: str, catalog: Catalog) -> Session:
        await self._request(
            "PUT", "/api/session/catalog", session_id,
            body={"code": session_id, "catalog": catalog.to_dict()},
        )
        return await self.poll(session_id)

    async def clear_session(self, session_id: str) -> None:
        await self._request("DELETE", "/api/session", session_id, params={"code": session_id})

    async def stats(self, session_id: str) -> dict:
        data = await self._request("GET", "/api/stats", session_id, params={"code": session_id})
        return data["stats"]

    async def lan_address(self) -> str:
        """The server's own LAN address (for the handoff QR)."""
        data = await self._request("GET", "/api/ip")
        return data["ip"]

    async def download_report(self, session_id: str, format: str = "csv") -> bytes:
        """Raw report body as served by /api/report."""
        try:
            resp = await self._client.get("/api/report", params={"code": session_id, "format": format})
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"Report download failed: {e}")
        if resp.status_code == 404:
            raise SessionNotFound(session_id)
        if resp.status_code >= 400:
            raise TransientNetworkError(f"Report download failed with status {resp.status_code}")
        return resp.content

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
