"""HTTP utilities for the object gateway integration."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, MutableMapping

import requests
from requests import Response
from requests.exceptions import ConnectionError, RequestException, Timeout

from templateflow.config import StoreSettings
from templateflow.core.logger import get_logger

from .models import StoreAuthError, StoreNotFound, StoreRequestError, StoreRetryableError, StoreTimeoutError

LOGGER = get_logger()

AUTHORIZATION_HEADER = "Authorization"
USER_AGENT = "TemplateFlow-Store/1.0"
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(slots=True)
class RequestDiagnostics:
    """Captured diagnostics for troubleshooting."""

    method: str
    url: str
    status: int | None
    server_date: str | None


class HttpClient:
    """Request helper wrapping retries, auth, and error classification."""

    def __init__(
        self,
        settings: StoreSettings,
        *,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not settings.base_url:
            raise StoreRequestError("Object gateway base_url is not configured")
        self._settings = settings
        self._session = session or requests.Session()
        self._session.verify = settings.verify_tls
        self._session.trust_env = settings.trust_env
        if settings.proxies:
            self._session.proxies.update(settings.proxies)
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._logger = logger or LOGGER
        self._retry_config = settings.retries
        self._timeout = settings.timeout_sec
        self._monotonic = monotonic

    @property
    def session(self) -> requests.Session:
        """Expose the reusable session (needed for streaming downloads)."""

        return self._session

    def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, object] | None = None,
        data: object | None = None,
        expected_status: Iterable[int] = (200,),
        stream: bool = False,
        timeout: float | None = None,
        allow_retry: bool = True,
        budget: float | None = None,
    ) -> Response:
        """Perform a gateway request with token injection and retries.

        ``budget`` is the time in seconds the whole call (every attempt and
        backoff included) may take. Each attempt uses the smaller of the
        configured timeout and what is left of the budget; once it is spent
        :class:`StoreTimeoutError` is raised.
        """

        url = self._compose_url(path)
        attempts = max(1, self._retry_config.max_attempts) if allow_retry else 1
        base_backoff = max(0.05, self._retry_config.backoff_ms / 1000.0)
        max_backoff = max(base_backoff, self._retry_config.max_backoff_ms / 1000.0)
        timeout_value = timeout or self._timeout
        deadline = None if budget is None else self._monotonic() + budget
        expected = tuple(expected_status)
        last_error: StoreRetryableError | None = None

        for attempt in range(1, attempts + 1):
            attempt_timeout = timeout_value
            if deadline is not None:
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    self._logger.warning(
                        "storage.http deadline_exceeded method=%s url=%s attempt=%d", method, url, attempt
                    )
                    raise StoreTimeoutError(
                        "Request deadline exceeded", payload={"url": url, "attempt": attempt}
                    ) from last_error
                attempt_timeout = min(timeout_value, remaining)
            request_headers: MutableMapping[str, str] = dict(headers or {})
            if self._settings.access_token:
                request_headers[AUTHORIZATION_HEADER] = f"Bearer {self._settings.access_token}"
            diagnostics = RequestDiagnostics(method=method, url=url, status=None, server_date=None)

            try:
                response = self._session.request(
                    method,
                    url,
                    headers=request_headers,
                    params=dict(params or {}),
                    json=json_body,
                    data=data,
                    timeout=attempt_timeout,
                    stream=stream,
                )
            except Timeout as exc:
                last_error = StoreRetryableError("Request timed out", payload={"url": url})
                self._logger.warning(
                    "storage.http timeout method=%s url=%s attempt=%d",
                    method,
                    url,
                    attempt,
                    exc_info=exc,
                )
            except (ConnectionError, RequestException) as exc:
                last_error = StoreRetryableError("Request failed", payload={"url": url})
                self._logger.warning(
                    "storage.http connection_error method=%s url=%s attempt=%d error=%s",
                    method,
                    url,
                    attempt,
                    type(exc).__name__,
                )
            else:
                diagnostics.status = response.status_code
                diagnostics.server_date = response.headers.get("Date")
                status = response.status_code
                if status in expected:
                    return response
                payload = self._safe_json(response)
                if status == 404:
                    raise StoreNotFound("Object not found", status_code=status, payload=payload)
                if status in (401, 403):
                    self._log_forbidden(diagnostics, payload)
                    raise StoreAuthError("Access denied", status_code=status, payload=payload)
                if allow_retry and status in RETRYABLE_STATUS:
                    self._logger.warning(
                        "storage.http retryable_status method=%s url=%s status=%d attempt=%d",
                        method,
                        url,
                        status,
                        attempt,
                    )
                    last_error = StoreRetryableError("Retryable response", status_code=status, payload=payload)
                else:
                    raise StoreRequestError(f"Unexpected status {status}", status_code=status, payload=payload)

            if attempt < attempts:
                self._sleep_with_backoff(base_backoff, max_backoff, attempt, deadline)

        if last_error is not None:
            raise last_error
        raise StoreRetryableError("Exhausted retries", payload={"url": url})

    def close(self) -> None:
        self._session.close()

    # Internal helpers -------------------------------------------------

    def _log_forbidden(self, diagnostics: RequestDiagnostics, payload: Mapping[str, object]) -> None:
        self._logger.error(
            "storage.http forbidden method=%s url=%s status=%s server_date=%s payload_code=%s",
            diagnostics.method,
            diagnostics.url,
            diagnostics.status,
            diagnostics.server_date,
            payload.get("code") or payload.get("errorCode"),
        )

    def _compose_url(self, path: str) -> str:
        base = (self._settings.base_url or "").rstrip("/")
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{base}{path}"

    def _sleep_with_backoff(self, base: float, maximum: float, attempt: int, deadline: float | None = None) -> None:
        delay = min(maximum, base * (2 ** (attempt - 1)))
        delay += random.uniform(0, delay / 2)
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - self._monotonic()))
        time.sleep(delay)

    def _safe_json(self, response: Response) -> dict[str, object]:
        try:
            data = response.json()
        except ValueError:
            text = response.text
            if len(text) > 200:
                text = text[:200] + "..."
            return {"body": text}
        return data if isinstance(data, dict) else {"body": data}


__all__ = ["HttpClient", "AUTHORIZATION_HEADER"]
