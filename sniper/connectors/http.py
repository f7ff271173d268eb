"""Async JSON HTTP client shared by the external capability providers."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ServiceError(Exception):
    """Base error for external service calls."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message


class ServiceHTTPError(ServiceError):
    """The service answered with a non-success HTTP status."""

    def __init__(self, service: str, status_code: int, body: str = "") -> None:
        super().__init__(service, f"HTTP {status_code} {body}".strip())
        self.status_code = status_code
        self.body = body

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def not_found(self) -> bool:
        return self.status_code in {400, 404}

    @property
    def server_error(self) -> bool:
        return self.status_code >= 500


class ServiceUnavailableError(ServiceError):
    """Network failure or timeout talking to the service."""


def _truncate(value: str, max_chars: int) -> str:
    if max_chars <= 0 or len(value) <= max_chars:
        return value
    return value[:max_chars] + "...(truncated)"


class ServiceClient:
    """JSON client with bounded retry on 429/5xx and network errors."""

    def __init__(
        self,
        name: str,
        base_url: str = "",
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_base_sec: float = 1.0,
        log_http: bool = False,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_sec = retry_base_sec
        self.log_http = log_http
        self.http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json", **(headers or {})},
            transport=transport,
        )
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> Any:
        return await self.request_json("GET", path, params=params, timeout=timeout, attempts=attempts)

    async def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> Any:
        return await self.request_json("POST", path, payload=payload, timeout=timeout, attempts=attempts)

    async def request_json(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
        attempts: int | None = None,
    ) -> Any:
        """Issue a request and decode JSON.

        Retries 429/5xx and network errors up to ``attempts`` times with an
        exponential sleep. Any other non-2xx status raises immediately.
        """
        max_attempts = max(1, attempts or self.retry_attempts)
        last_error: ServiceError | None = None
        for attempt in range(max_attempts):
            start = time.perf_counter()
            if self.log_http:
                self.log.info(
                    "service_request",
                    service=self.name,
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                )
            try:
                response = await self.http.request(
                    method,
                    path,
                    params=params,
                    json=payload,
                    timeout=timeout or self.timeout,
                )
            except httpx.RequestError as exc:
                last_error = ServiceUnavailableError(self.name, f"{type(exc).__name__}: {exc}")
                self.log.warning(
                    "service_request_error",
                    service=self.name,
                    path=path,
                    attempt=attempt + 1,
                    error=str(last_error),
                )
                if attempt + 1 < max_attempts:
                    await asyncio.sleep(self.retry_base_sec * 2**attempt)
                continue

            latency_ms = (time.perf_counter() - start) * 1000
            if response.status_code in RETRYABLE_STATUS:
                last_error = ServiceHTTPError(self.name, response.status_code, _truncate(response.text, 200))
                self.log.warning(
                    "service_http_error_retrying",
                    service=self.name,
                    path=path,
                    status_code=response.status_code,
                    latency_ms=round(latency_ms, 2),
                )
                if attempt + 1 < max_attempts:
                    await asyncio.sleep(self.retry_base_sec * 2**attempt)
                continue
            if response.status_code >= 400:
                raise ServiceHTTPError(self.name, response.status_code, _truncate(response.text, 200))
            try:
                data = response.json()
            except ValueError as exc:
                raise ServiceError(self.name, f"invalid JSON response: {exc}") from exc
            if self.log_http:
                self.log.info(
                    "service_response",
                    service=self.name,
                    path=path,
                    status_code=response.status_code,
                    latency_ms=round(latency_ms, 2),
                )
            return data
        raise last_error or ServiceUnavailableError(self.name, "no attempts made")
