"""
HTTP transport used by the cache to reach the origin server.

The cache only needs: send a request with extra headers, read the status,
the ETag/Last-Modified response headers and the decoded body, and tell a
304 "not modified" apart from a full response.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import requests
from requests.structures import CaseInsensitiveDict
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from config.settings import settings
from .errors import TransportError

logger = logging.getLogger("cache.transport")

NOT_MODIFIED = 304
RETRY_ATTEMPTS = 3


@dataclass
class TransportResponse:
    """Status, case-insensitive headers and decoded body of a response."""
    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: Any = None

    def __post_init__(self):
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def not_modified(self) -> bool:
        return self.status == NOT_MODIFIED


class Transport(Protocol):
    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Any] = None,
    ) -> TransportResponse: ...


class RequestsTransport:
    """
    Transport backed by a requests Session.

    Relative URLs are joined to base_url. Connection errors and timeouts are
    retried, then raise TransportError, as do status codes >= 400. 304 is
    returned as-is.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self.session = session or requests.Session()

    def _full_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _send(
        self, method: str, url: str, headers: Mapping[str, str], body: Optional[Any]
    ) -> requests.Response:
        """
        Send one request.

        Retries connection failures and timeouts with exponential backoff;
        HTTP error statuses are not retried.
        """
        return self.session.request(
            method, url, headers=dict(headers), json=body, timeout=self.timeout
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Any] = None,
    ) -> TransportResponse:
        full_url = self._full_url(url)
        try:
            response = self._send(method.upper(), full_url, headers, body)
        except requests.RequestException as e:
            logger.warning(f"{method.upper()} {full_url} failed after retries: {e}")
            raise TransportError(f"{method.upper()} {full_url} failed: {e}") from e

        if response.status_code == NOT_MODIFIED:
            return TransportResponse(status=NOT_MODIFIED, headers=response.headers)

        if response.status_code >= 400:
            logger.warning(f"{method.upper()} {full_url} returned {response.status_code}")
            raise TransportError(
                f"{method.upper()} {full_url} returned {response.status_code}",
                status=response.status_code,
            )

        if not response.content:
            payload = None
        else:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
        return TransportResponse(
            status=response.status_code,
            headers=response.headers,
            body=payload,
        )
