"""
HTTP client for the remote license authority.
Sends {token, machineId} to POST /licenses/validate and classifies failures
so the retry policy only retries what another attempt can fix.
"""

import hashlib
import logging
import platform
import socket
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from monitoring.metrics import LicenseMetrics
from utils.exceptions import AuthorityResponseError, AuthorityTransportError

logger = logging.getLogger(__name__)


def compute_machine_id() -> str:
    """Stable fingerprint of this host: hostname, MAC-derived node id and platform."""
    raw = f"{socket.gethostname()}:{uuid.getnode()}:{platform.system()}:{platform.machine()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def is_transient(error: BaseException) -> bool:
    """Retry predicate: connection failures, timeouts and 5xx only."""
    return isinstance(error, AuthorityTransportError) and error.transient


class LicenseAuthorityClient:
    """
    Async client for the license authority.

    Raises:
        AuthorityTransportError: no usable HTTP answer. ``transient`` is True for
            connect errors, timeouts, other transport failures and 5xx.
        AuthorityResponseError: 2xx answer whose body is not an object with a
            non-null ``valid`` field.
    """

    VALIDATE_PATH = "/licenses/validate"

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 timeout: float = 5.0,
                 user_agent: str = "HR-SM-Backend/1.0",
                 machine_id: Optional[str] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 metrics: Optional[LicenseMetrics] = None):
        self.base_url = base_url.rstrip("/")
        self.machine_id = machine_id or compute_machine_id()
        self.metrics = metrics

        headers = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        }
        if api_key:
            headers["X-API-Key"] = api_key

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self.headers = headers

        logger.info(f"✅ [LICENSE-AUTHORITY] Client configured for {self.base_url} (timeout={timeout}s)")

    def _record(self, result: str, started: float):
        if self.metrics is not None:
            self.metrics.record_authority_request(result, time.perf_counter() - started)

    async def validate(self, token: str) -> Dict[str, Any]:
        """Ask the authority for a verdict on ``token``; returns the response body."""
        url = f"{self.base_url}{self.VALIDATE_PATH}"
        payload = {"token": token, "machineId": self.machine_id}
        started = time.perf_counter()

        try:
            response = await self.client.post(url, json=payload, headers=self.headers)
        except httpx.TimeoutException as e:
            self._record("timeout", started)
            raise AuthorityTransportError(f"License authority timed out: {e}", transient=True)
        except httpx.TransportError as e:
            self._record("connection_error", started)
            raise AuthorityTransportError(f"License authority unreachable: {e}", transient=True)

        if response.status_code >= 500:
            self._record("server_error", started)
            raise AuthorityTransportError(
                f"License authority returned {response.status_code}",
                transient=True,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            self._record("client_error", started)
            raise AuthorityTransportError(
                f"License authority rejected the request with {response.status_code}",
                transient=False,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            self._record("malformed", started)
            raise AuthorityResponseError("License authority returned a non-JSON body", body=response.text)

        if not isinstance(body, dict) or body.get("valid") is None:
            self._record("malformed", started)
            raise AuthorityResponseError("License authority response has no validity verdict", body=body)

        self._record("ok", started)
        return body

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
