"""Async HTTP client for the persistent record store with retry logic,
timeout handling, and an in-memory LRU cache.

The record store is a PostgREST (Supabase REST) endpoint.  Tables are read
and written under ``/rest/v1/<table>``; anything that needs slot math
(available dates/times, booking, cancelling, rescheduling) goes through
stored functions under ``/rest/v1/rpc/<function>`` so the scheduling rules
stay in the database.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from typing import Any

import httpx

from receptionist.config import RECORD_STORE_KEY, RECORD_STORE_URL
from receptionist.services.cache import LRUCache
from receptionist.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 10.0

# ── Cache configuration ─────────────────────────────────────────────
CACHE_TTL_SECONDS = 300
_CK_BUSINESS = "business:"
_CK_SERVICES = "services:"

# Postgres `time` columns come back as HH:MM:SS
_TIME_PREFIX_RE = re.compile(r"^(\d{1,2}):(\d{2})")


def _hhmm(value: Any) -> str:
    text = str(value).strip()
    match = _TIME_PREFIX_RE.match(text)
    return f"{int(match[1]):02d}:{match[2]}" if match else text


class RecordStoreError(Exception):
    """Raised when a record-store call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _eq(value: Any) -> str:
    return f"eq.{value}"


class RecordStoreClient:
    """Thin async wrapper around the record store's REST API.

    **Cache invalidation contract**

    Business rows and service lists are cached for ``CACHE_TTL_SECONDS``.
    Every admin write that touches them (``update_prompt``,
    ``add_service``, ``update_service``) invalidates the affected keys so the
    next read is fresh.  Availability and appointments are never cached.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        cache: LRUCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or RECORD_STORE_URL).rstrip("/")
        key = api_key if api_key is not None else RECORD_STORE_KEY
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if key:
            headers["apikey"] = key
            headers["Authorization"] = f"Bearer {key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._cache = cache or LRUCache(default_ttl=CACHE_TTL_SECONDS)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries.

        Returns the decoded JSON body, or ``None`` for an empty response.
        """
        headers = {"Prefer": prefer} if prefer else None
        operation = f"{method} {path.removeprefix('/rest/v1/')}"
        last_error: Exception | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                with metrics.track("record_store", operation):
                    response = await self._client.request(
                        method, path, params=params, json=json_body, headers=headers,
                    )
                    if response.status_code >= 500:
                        raise RecordStoreError(
                            f"Server error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                    if response.status_code >= 400:
                        raise RecordStoreError(
                            f"Client error {response.status_code}: {response.text}",
                            status_code=response.status_code,
                        )
                if not response.content:
                    return None
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Record store attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except RecordStoreError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Record store server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                await asyncio.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise RecordStoreError(f"Record store request failed after {MAX_RETRIES} retries: {last_error}")

    async def _rpc(self, function: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", f"/rest/v1/rpc/{function}", json_body=payload)

    def _invalidate_business(self, business_id: str) -> None:
        self._cache.invalidate(f"{_CK_BUSINESS}{business_id}")
        removed = self._cache.invalidate_prefix(f"{_CK_SERVICES}{business_id}:")
        logger.debug("Cache: invalidated business %s (%d service lists)", business_id, removed)

    # ── Business & services ──────────────────────────────────────────

    async def get_business(self, business_id: str) -> dict[str, Any] | None:
        """Return the business row with its services embedded (cached)."""
        cache_key = f"{_CK_BUSINESS}{business_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        rows = await self._request(
            "GET",
            "/rest/v1/businesses",
            params={"business_id": _eq(business_id), "select": "*,services(*)", "limit": 1},
        )
        row = rows[0] if rows else None
        if row is not None:
            self._cache.put(cache_key, row)
        return row

    async def list_services(self, business_id: str, *, include_inactive: bool = False) -> list[dict[str, Any]]:
        """List the business's services ordered by name (cached)."""
        cache_key = f"{_CK_SERVICES}{business_id}:{'all' if include_inactive else 'active'}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        params: dict[str, Any] = {"business_id": _eq(business_id), "select": "*", "order": "name.asc"}
        if not include_inactive:
            params["active"] = _eq("true")
        rows = await self._request("GET", "/rest/v1/services", params=params) or []
        self._cache.put(cache_key, rows)
        return rows

    async def is_admin(self, business_id: str, user_id: str) -> bool:
        """True when *user_id* is the business's registered admin number."""
        row = await self.get_business(business_id)
        if not row:
            return False
        admins = {row.get("admin_phone")} | set((row.get("config") or {}).get("adminPhones") or [])
        return user_id in {a for a in admins if a}

    # ── Availability ─────────────────────────────────────────────────

    async def available_dates(
        self,
        business_id: str,
        service_name: str | None = None,
        reference_month: str | None = None,
    ) -> list[dict[str, Any]]:
        """Upcoming dates with ``hasAvailability`` flags.  Never cached."""
        return await self._rpc(
            "get_available_dates",
            {"p_business_id": business_id, "p_service_name": service_name, "p_reference_month": reference_month},
        ) or []

    async def available_times(self, business_id: str, date: str, service_name: str) -> list[str]:
        """Free start times (``HH:MM``) for a service on *date*.  Never cached."""
        rows = await self._rpc(
            "get_available_times",
            {"p_business_id": business_id, "p_date": date, "p_service_name": service_name},
        ) or []
        return [_hhmm(row["time"] if isinstance(row, dict) else row) for row in rows]

    # ── Appointments ─────────────────────────────────────────────────

    async def create_appointment(
        self,
        business_id: str,
        user_id: str,
        service_name: str,
        date: str,
        time: str,
        *,
        customer_name: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Book one appointment; the stored function rejects taken slots."""
        row = await self._rpc(
            "create_appointment",
            {
                "p_business_id": business_id,
                "p_customer_phone": user_id,
                "p_customer_name": customer_name,
                "p_service_name": service_name,
                "p_date": date,
                "p_time": time,
                "p_notes": notes,
            },
        )
        logger.info("Appointment created for %s: %s %s %s", user_id, service_name, date, time)
        return row or {}

    async def list_appointments(self, business_id: str, user_id: str) -> list[dict[str, Any]]:
        """Upcoming appointments for one customer."""
        return await self._rpc(
            "get_customer_appointments",
            {"p_business_id": business_id, "p_customer_phone": user_id},
        ) or []

    async def cancel_appointment(self, business_id: str, user_id: str, date: str, time: str) -> dict[str, Any]:
        """Cancel the customer's appointment starting at *date* *time*."""
        row = await self._rpc(
            "cancel_appointment",
            {"p_business_id": business_id, "p_customer_phone": user_id, "p_date": date, "p_time": time},
        )
        logger.info("Appointment %s %s cancelled for %s", date, time, user_id)
        return row or {}

    async def reschedule_appointment(
        self,
        business_id: str,
        user_id: str,
        original_date: str,
        original_time: str,
        new_date: str,
        new_time: str,
    ) -> dict[str, Any]:
        row = await self._rpc(
            "reschedule_appointment",
            {
                "p_business_id": business_id,
                "p_customer_phone": user_id,
                "p_original_date": original_date,
                "p_original_time": original_time,
                "p_new_date": new_date,
                "p_new_time": new_time,
            },
        )
        logger.info("Appointment %s %s moved to %s %s", original_date, original_time, new_date, new_time)
        return row or {}

    async def request_human_agent(self, business_id: str, user_id: str, reason: str) -> dict[str, Any]:
        rows = await self._request(
            "POST",
            "/rest/v1/human_agent_requests",
            json_body={"business_id": business_id, "customer_phone": user_id, "reason": reason},
            prefer="return=representation",
        )
        return rows[0] if rows else {}

    # ── Admin writes ─────────────────────────────────────────────────

    async def update_prompt(self, business_id: str, prompt: str) -> None:
        await self._rpc("update_business_prompt", {"p_business_id": business_id, "p_prompt": prompt})
        self._invalidate_business(business_id)

    async def add_service(
        self,
        business_id: str,
        name: str,
        duration_minutes: int,
        price: float,
        description: str = "",
    ) -> dict[str, Any]:
        rows = await self._request(
            "POST",
            "/rest/v1/services",
            json_body={
                "business_id": business_id,
                "name": name,
                "duration_minutes": duration_minutes,
                "price": price,
                "description": description,
                "active": True,
            },
            prefer="return=representation",
        )
        self._invalidate_business(business_id)
        return rows[0] if rows else {}

    async def update_service(self, business_id: str, name: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Patch the service called *name*; returns the updated row or ``None``."""
        rows = await self._request(
            "PATCH",
            "/rest/v1/services",
            params={"business_id": _eq(business_id), "name": f"ilike.{name}"},
            json_body=changes,
            prefer="return=representation",
        )
        self._invalidate_business(business_id)
        return rows[0] if rows else None

    async def list_all_appointments(
        self,
        business_id: str,
        *,
        date: str | None = None,
        status: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Appointments of the whole business, optionally for one day.

        *status* ``"all"`` disables the default scheduled/confirmed filter.
        """
        params: dict[str, Any] = {
            "business_id": _eq(business_id),
            "select": "appointment_id,start_time,status,customer_phone,customer_name,services(name)",
            "order": "start_time.asc",
            "limit": limit,
        }
        if date:
            params["and"] = f"(start_time.gte.{date}T00:00:00,start_time.lte.{date}T23:59:59)"
        if status is None:
            params["status"] = "in.(scheduled,confirmed)"
        elif status != "all":
            params["status"] = _eq(status)
        return await self._request("GET", "/rest/v1/appointments", params=params) or []

    async def create_schedule_block(
        self,
        business_id: str,
        title: str,
        start_time: str,
        end_time: str,
    ) -> dict[str, Any]:
        rows = await self._request(
            "POST",
            "/rest/v1/schedule_blocks",
            json_body={"business_id": business_id, "title": title, "start_time": start_time, "end_time": end_time},
            prefer="return=representation",
        )
        return rows[0] if rows else {}


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: RecordStoreClient | None = None
_client_lock = threading.Lock()


def get_record_store() -> RecordStoreClient:
    """Return a module-level RecordStoreClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = RecordStoreClient()
    return _client
