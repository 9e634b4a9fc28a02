"""App generation REST API client.

Provides an async httpx-based client for the tenant's app generation and
publication APIs with bearer token auth.

Each request carries its own deadline on obtaining the response headers: on
expiry the in-flight call is cancelled and RequestTimeoutError is raised.
Non-success statuses raise ApiError; the response body is kept on the
exception for diagnostics but never logged.
A success body that is not a JSON object raises InvalidResponseError.
"""

import asyncio
import logging
from typing import Any

import httpx

from .errors import ApiError, InvalidResponseError, RequestTimeoutError, TransportError
from .metrics import api_requests_total
from .models import ApplicationDetails, JobSnapshot, PublicationSnapshot

logger = logging.getLogger("appgen.api_client")

__all__ = ["AppGenApiClient"]


class AppGenApiClient:
    """App generation API client using httpx with Bearer token auth.

    Uses a long-lived httpx.AsyncClient with connection pooling. The client
    can be injected, which is how tests and alternative hosts supply their own
    transport.

    Attributes:
        hostname: Tenant management hostname
        base_url: https URL derived from hostname
        read_timeout: Deadline for status reads (seconds)
        write_timeout: Deadline for mutating calls (seconds)

    Example:
        >>> async with AppGenApiClient("acme.outsystems.dev") as client:
        ...     job = await client.create_job(token, "A todo app with due dates")
        ...     snapshot = await client.get_job(token, job)
    """

    JOBS_PATH = "/api/app-generation/v1alpha3/jobs"
    PUBLICATIONS_PATH = "/api/v1/publications"
    APPLICATIONS_PATH = "/api/v1/applications"

    # Transport-level limits; the per-request deadline is enforced separately
    CONNECT_TIMEOUT = 5.0  # seconds
    POOL_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        hostname: str,
        read_timeout: float = 15.0,
        write_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            hostname: Tenant management hostname, without scheme
            read_timeout: Deadline for GET requests in seconds (default: 15)
            write_timeout: Deadline for mutating requests in seconds (default: 30)
            http_client: Optional pre-configured httpx.AsyncClient; when given,
                the caller owns it and close() leaves it open
        """
        self.hostname = hostname
        self.base_url = f"https://{hostname}"
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=self.CONNECT_TIMEOUT,
                read=max(read_timeout, write_timeout),
                write=self.CONNECT_TIMEOUT,
                pool=self.POOL_TIMEOUT,
            ),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "AppGenApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit -- close httpx client."""
        await self.close()

    async def close(self) -> None:
        """Close the httpx client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # --- Core HTTP Method ---

    async def request(
        self,
        endpoint: str,
        *,
        token: str,
        method: str = "GET",
        body: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Make one API request with a deadline and error normalization.

        Args:
            endpoint: API path (e.g., /api/v1/publications)
            token: Bearer token
            method: HTTP method
            body: JSON-serializable request body, or None for no body
            timeout: Deadline in seconds; defaults to read_timeout for GET and
                write_timeout otherwise

        Returns:
            Parsed JSON body, or None for an empty success response

        Raises:
            RequestTimeoutError: If no response arrives within the deadline
            ApiError: On non-2xx status
            InvalidResponseError: On a 2xx body that is not valid JSON
            TransportError: On connection-level failures
        """
        if timeout is None:
            timeout = self.read_timeout if method == "GET" else self.write_timeout

        label = self._endpoint_label(endpoint)
        headers = {"Authorization": f"Bearer {token}"}
        request = self._client.build_request(
            method,
            f"{self.base_url}{endpoint}",
            headers=headers,
            json=body,
        )

        try:
            response = await asyncio.wait_for(
                self._client.send(request, stream=True), timeout=timeout
            )
            try:
                content = await response.aread()
            finally:
                await response.aclose()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            api_requests_total.labels(method=method, endpoint=label, outcome="timeout").inc()
            logger.warning(
                "api_request_timeout",
                extra={"endpoint": endpoint, "method": method, "timeout_seconds": timeout},
            )
            raise RequestTimeoutError(endpoint, timeout) from e
        except httpx.HTTPError as e:
            api_requests_total.labels(method=method, endpoint=label, outcome="transport").inc()
            logger.warning(
                "api_request_transport_error",
                extra={"endpoint": endpoint, "method": method, "error_type": type(e).__name__},
            )
            raise TransportError(endpoint, type(e).__name__) from e

        if not response.is_success:
            outcome = "http_5xx" if response.status_code >= 500 else "http_4xx"
            api_requests_total.labels(method=method, endpoint=label, outcome=outcome).inc()
            logger.error(
                "api_request_failed",
                extra={"status": response.status_code, "endpoint": endpoint, "method": method},
            )
            raise ApiError(
                response.status_code,
                endpoint,
                content.decode("utf-8", errors="replace"),
            )

        api_requests_total.labels(method=method, endpoint=label, outcome="ok").inc()
        if not content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "api_response_invalid",
                extra={"endpoint": endpoint, "method": method, "reason": "non-JSON body"},
            )
            raise InvalidResponseError(endpoint, "non-JSON body") from e

    def _as_object(self, data: Any, endpoint: str) -> dict[str, Any]:
        """Return a parsed body as a dict; an empty body counts as ``{}``."""
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error(
                "api_response_invalid",
                extra={"endpoint": endpoint, "reason": type(data).__name__},
            )
            raise InvalidResponseError(endpoint, f"expected an object, got {type(data).__name__}")
        return data

    def _endpoint_label(self, endpoint: str) -> str:
        """Collapse entity ids in a path so metric labels stay bounded."""
        for prefix in (self.JOBS_PATH, self.PUBLICATIONS_PATH, self.APPLICATIONS_PATH):
            if endpoint.startswith(prefix + "/"):
                tail = endpoint[len(prefix) + 1 :].split("/")[1:]
                return "/".join([prefix, "{id}", *tail])
        return endpoint

    # --- App Generation Endpoints ---

    async def create_job(self, token: str, prompt: str) -> str | None:
        """Create a generation job.

        Returns:
            Job key, or None when the response carries no key
        """
        data = await self.request(
            self.JOBS_PATH,
            token=token,
            method="POST",
            body={"prompt": prompt, "files": [], "ignoreTenantContext": True},
        )
        return self._as_object(data, self.JOBS_PATH).get("key") or None

    async def get_job(self, token: str, job_id: str) -> JobSnapshot:
        """Read the current state of a generation job."""
        endpoint = f"{self.JOBS_PATH}/{job_id}"
        data = await self.request(endpoint, token=token)
        return JobSnapshot.from_api(self._as_object(data, endpoint))

    async def trigger_generation(self, token: str, job_id: str) -> None:
        """Start the generation phase of a ready job."""
        await self.request(
            f"{self.JOBS_PATH}/{job_id}/generation",
            token=token,
            method="POST",
        )

    # --- Publication Endpoints ---

    async def start_publication(self, token: str, application_key: str) -> str | None:
        """Start publishing revision 1 of an application.

        Returns:
            Publication key, or None when the response carries no key
        """
        data = await self.request(
            self.PUBLICATIONS_PATH,
            token=token,
            method="POST",
            body={
                "applicationKey": application_key,
                "applicationRevision": 1,
                "downloadUrl": None,
            },
        )
        return self._as_object(data, self.PUBLICATIONS_PATH).get("key") or None

    async def get_publication(self, token: str, publication_key: str) -> PublicationSnapshot:
        """Read the current state of a publication."""
        endpoint = f"{self.PUBLICATIONS_PATH}/{publication_key}"
        data = await self.request(endpoint, token=token)
        return PublicationSnapshot.from_api(self._as_object(data, endpoint))

    async def get_application(self, token: str, application_key: str) -> ApplicationDetails:
        """Fetch application details (used for the final URL)."""
        endpoint = f"{self.APPLICATIONS_PATH}/{application_key}"
        data = await self.request(endpoint, token=token)
        return ApplicationDetails.from_api(self._as_object(data, endpoint))
