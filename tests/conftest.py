"""Shared pytest fixtures for appgen tests.

Fixture Organization:
    - Config fixtures: AppGenConfig instances that never read a .env file
    - HTTP fixtures: a scripted tenant API served through httpx.MockTransport
    - Timing fixtures: a recording sleep that replaces asyncio.sleep

References:
    - pytest fixtures docs: https://docs.pytest.org/en/stable/how-to/fixtures.html
    - httpx mock transport: https://www.python-httpx.org/advanced/transports/#mock-transports
"""

import json
import os
from unittest.mock import AsyncMock

import httpx
import pytest

from appgen.api_client import AppGenApiClient
from appgen.config import AppGenConfig, reset_config
from appgen.credentials import ConfigCredentialProvider, Credentials
from appgen.models import TokenGrant
from appgen.orchestrator import AppGenOrchestrator
from appgen.token_cache import TokenCache

HOSTNAME = "acme.outsystems.dev"
USERNAME = "dev@acme.com"
PASSWORD = "s3cret-pw"

JOBS = AppGenApiClient.JOBS_PATH
PUBLICATIONS = AppGenApiClient.PUBLICATIONS_PATH
APPLICATIONS = AppGenApiClient.APPLICATIONS_PATH


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    """Clear the cached settings singleton around every test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove appgen variables and run from a directory without a .env file."""
    for key in list(os.environ.keys()):
        if key.upper().startswith(("APPGEN_", "OS_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def make_config(**overrides) -> AppGenConfig:
    """Build settings with test credentials, ignoring any .env file."""
    values = {"hostname": HOSTNAME, "username": USERNAME, "password": PASSWORD}
    values.update(overrides)
    return AppGenConfig(_env_file=None, **values)


@pytest.fixture
def config() -> AppGenConfig:
    return make_config()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(hostname=HOSTNAME, username=USERNAME, password=PASSWORD)


# =============================================================================
# Timing Fixtures
# =============================================================================


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# HTTP Fixtures
# =============================================================================


def json_response(status_code: int, payload) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json"},
    )


class FakeTenantApi:
    """Scripted app generation API served through httpx.MockTransport.

    Job and publication statuses are consumed one per poll; the last status
    repeats once the script runs out. ``fail_next`` queues error responses for
    a route ahead of its normal answer.
    """

    def __init__(
        self,
        job_statuses=("Pending", "ReadyToGenerate", "Generating", "Done"),
        publication_statuses=("Running", "Finished"),
        job_key="job-1",
        publication_key="pub-1",
        app_key="app-123",
        url_path="bakery-crm",
    ):
        self.job_statuses = list(job_statuses)
        self.publication_statuses = list(publication_statuses)
        self.job_key = job_key
        self.publication_key = publication_key
        self.app_key = app_key
        self.url_path = url_path
        self.requests: list[httpx.Request] = []
        self._failures: dict[tuple[str, str], list[int]] = {}

    def fail_next(self, method: str, path: str, *statuses: int) -> None:
        self._failures.setdefault((method, path), []).extend(statuses)

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    @staticmethod
    def _next(script: list[str]) -> str:
        return script.pop(0) if len(script) > 1 else script[0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        queued = self._failures.get((method, path))
        if queued:
            return json_response(queued.pop(0), {"error": "internal detail"})

        if method == "POST" and path == JOBS:
            return json_response(201, {"key": self.job_key} if self.job_key else {})
        if method == "GET" and path == f"{JOBS}/job-1":
            status = self._next(self.job_statuses)
            payload = {"key": "job-1", "status": status}
            if status == "Done" and self.app_key:
                payload["appSpec"] = {"appKey": self.app_key}
            return json_response(200, payload)
        if method == "POST" and path == f"{JOBS}/job-1/generation":
            return httpx.Response(202)
        if method == "POST" and path == PUBLICATIONS:
            return json_response(
                201, {"key": self.publication_key} if self.publication_key else {}
            )
        if method == "GET" and path == f"{PUBLICATIONS}/pub-1":
            return json_response(
                200, {"key": "pub-1", "status": self._next(self.publication_statuses)}
            )
        if method == "GET" and path == f"{APPLICATIONS}/app-123":
            payload = {"key": "app-123", "name": "Bakery CRM"}
            if self.url_path:
                payload["urlPath"] = self.url_path
            return json_response(200, payload)
        return json_response(404, {"error": "not found"})

    def client_factory(self):
        """API client factory for AppGenOrchestrator."""

        def factory(hostname: str) -> AppGenApiClient:
            http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
            return AppGenApiClient(hostname, http_client=http_client)

        return factory


@pytest.fixture
def fake_api() -> FakeTenantApi:
    return FakeTenantApi()


# =============================================================================
# Orchestrator Fixtures
# =============================================================================


@pytest.fixture
def mock_authenticate() -> AsyncMock:
    """Authentication exchange returning a one-hour token."""
    return AsyncMock(return_value=TokenGrant(access_token="tok-1", expires_in=3600))


@pytest.fixture
def make_orchestrator(config, fake_api, mock_authenticate, recording_sleep):
    """Factory building an orchestrator wired to the fake API."""

    def _make(api: FakeTenantApi | None = None, cfg: AppGenConfig | None = None):
        cfg = cfg or config
        return AppGenOrchestrator(
            ConfigCredentialProvider(cfg),
            config=cfg,
            token_cache=TokenCache(mock_authenticate),
            api_client_factory=(api or fake_api).client_factory(),
            sleep=recording_sleep,
        )

    return _make
