from __future__ import annotations

import os
from typing import Any, List, Optional

import httpx

from carebook.models import AppointmentSnapshot, parse_snapshot


BOOKING_API_URL = os.getenv("BOOKING_API_URL", "http://localhost:8080/api").strip().rstrip("/")
BOOKING_API_TOKEN = os.getenv("BOOKING_API_TOKEN", "").strip()
BOOKING_API_TIMEOUT = float(os.getenv("BOOKING_API_TIMEOUT", "15.0"))

UA = "carebook-sync/0.1 (+httpx)"


async def _get_json(client: httpx.AsyncClient, path: str) -> Any:
    r = await client.get(path, follow_redirects=True)
    r.raise_for_status()
    return r.json()


def _unwrap(payload: Any) -> Any:
    # backend wraps most responses as {"data": ...}
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class BookingApiSource:
    """
    Booking backend client.

    fetch() is the authoritative appointment list for the signed-in user.
    Errors (transport, 401/403, 5xx) are raised as-is; retrying is the
    cache's business, not ours.
    """

    def __init__(
        self,
        base_url: str = BOOKING_API_URL,
        token: str = BOOKING_API_TOKEN,
        timeout: float = BOOKING_API_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        # one AsyncClient, reused across refreshes
        if self._client is None:
            headers = {"User-Agent": UA, "Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self._timeout)
        return self._client

    async def fetch(self) -> AppointmentSnapshot:
        payload = await _get_json(self._get_client(), "/appointments/booked")
        return parse_snapshot(payload)

    async def fetch_profile(self) -> dict:
        data = _unwrap(await _get_json(self._get_client(), "/profile"))
        return data if isinstance(data, dict) else {}

    async def fetch_doctors(self) -> List[dict]:
        data = _unwrap(await _get_json(self._get_client(), "/employees"))
        if not isinstance(data, list):
            return []
        return [d for d in data if isinstance(d, dict)]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
