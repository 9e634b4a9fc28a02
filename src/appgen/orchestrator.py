"""Job orchestration: prompt in, deployed app URL out.

Runs the generation and publication pipeline as a lazy stream of progress
messages:

    1 create job (retry) -> 2 poll until ReadyToGenerate -> 3 trigger generation
    (retry) -> 4 poll until Done -> 5 start publication (retry) -> 6 poll until
    Finished -> 7 fetch application details -> final URL

Stages run strictly in order; none starts before the previous one succeeded.
Each run gets its own correlation id, bound for every log line it produces.
The same id is quoted as ``(ref: <id>)`` on the opening progress message and
on the failure message, so users can report a reference that matches the logs.

On failure the stream yields exactly one sanitized message and then re-raises
the original error. A consumer that stops iterating (``aclose()``) or a
cancelled task stops the run: the poll loops are parked at a yield at that
point, so no further request is issued and no sleep is left pending.
"""

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .api_client import AppGenApiClient
from .auth import FederatedAuthenticator
from .config import AppGenConfig, PollingProfile, get_config
from .credentials import ConfigCredentialProvider, CredentialProvider, Credentials
from .errors import AppGenError, sanitize_error_message
from .logging_config import correlation_scope, new_correlation_id
from .metrics import orchestration_duration_seconds, orchestrations_total
from .models import (
    JobSnapshot,
    JobStatus,
    PublicationSnapshot,
    PublicationStatus,
    TokenGrant,
)
from .polling import PollAttempt, PollOutcome, iter_polls
from .retry import with_retry
from .token_cache import TokenCache
from .validation import validate_prompt

logger = logging.getLogger("appgen.orchestrator")

__all__ = [
    "AppGenOrchestrator",
    "HealthCheckResult",
    "PROGRESS_EVERY",
    "TOTAL_STEPS",
]

T = TypeVar("T")

TOTAL_STEPS = 7
PROGRESS_EVERY = 5  # report the first poll, then every 5th

_URL_PATTERN = re.compile(r"https://\S+")


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of the connectivity/auth check."""

    success: bool
    message: str


class _StageResult(Generic[T]):
    """Holds the successful snapshot of a polling stage."""

    def __init__(self) -> None:
        self.value: T | None = None


def _status_text(status: Any) -> str:
    return str(getattr(status, "value", status))


def _token_owner(credentials: Credentials) -> tuple[str, str]:
    return (credentials.hostname, credentials.username)


class AppGenOrchestrator:
    """Runs the create-and-deploy pipeline.

    The orchestrator is parameterized over two capabilities: a credential
    provider and an API client factory (which owns the HTTP transport). Hosts
    supply different implementations of those and nothing else.

    Attributes:
        config: Settings (timeouts, polling profiles, URL suffixes)
        credentials: Where tenant credentials come from
        token_cache: Process-wide bearer token cache

    Example:
        >>> orchestrator = AppGenOrchestrator()
        >>> async for message in orchestrator.create_and_deploy("A CRM for a bakery"):
        ...     print(message)
    """

    def __init__(
        self,
        credentials: CredentialProvider | None = None,
        *,
        config: AppGenConfig | None = None,
        token_cache: TokenCache | None = None,
        api_client_factory: Callable[[str], AppGenApiClient] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or get_config()
        self.credentials = credentials or ConfigCredentialProvider(self.config)
        self.token_cache = token_cache or TokenCache(
            self._authenticate,
            buffer_seconds=self.config.token_expiry_buffer_seconds,
        )
        self._api_client_factory = api_client_factory or self._default_api_client
        self._sleep = sleep

    # --- Capabilities ---

    def _default_api_client(self, hostname: str) -> AppGenApiClient:
        return AppGenApiClient(
            hostname,
            read_timeout=self.config.read_timeout_seconds,
            write_timeout=self.config.write_timeout_seconds,
        )

    async def _authenticate(self) -> TokenGrant:
        authenticator = FederatedAuthenticator(
            self.credentials.get_credentials(),
            timeout=self.config.auth_timeout_seconds,
            default_expires_in=self.config.token_default_expires_in,
        )
        return await authenticator.authenticate()

    async def _retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            operation,
            max_attempts=self.config.retry_max_attempts,
            initial_delay=self.config.retry_initial_delay_seconds,
            sleep=self._sleep,
        )

    def build_app_url(self, hostname: str, url_path: str) -> str:
        """Map the management hostname to the live app hostname and append the path."""
        app_host = hostname.replace(
            self.config.management_host_suffix, self.config.app_host_suffix
        )
        return f"https://{app_host}/{url_path.lstrip('/')}"

    # --- Polling stages ---

    async def _watch(
        self,
        stage: str,
        poll: Callable[[], Awaitable[T]],
        is_success: Callable[[T], bool],
        is_failure: Callable[[T], bool],
        profile: PollingProfile,
        progress: Callable[[int, int], str],
        outcome: _StageResult[T],
    ) -> AsyncIterator[str]:
        """Poll one stage, yielding periodic progress; stores the success snapshot."""
        warned_unknown = False
        polls = iter_polls(
            poll,
            is_success,
            is_failure,
            max_attempts=profile.max_attempts,
            initial_interval=profile.initial_interval,
            max_interval=profile.max_interval,
            stage=stage,
            sleep=self._sleep,
        )
        async with aclosing(polls):
            async for attempt in polls:
                if not warned_unknown and not getattr(attempt.result, "is_known_status", True):
                    warned_unknown = True
                    logger.warning(
                        "poll_unknown_status",
                        extra={"stage": stage, "status": _status_text(attempt.result.status)},
                    )
                if attempt.outcome is PollOutcome.SUCCESS:
                    outcome.value = attempt.result
                elif attempt.outcome is PollOutcome.PENDING and self._should_report(attempt):
                    yield progress(attempt.attempt + 1, profile.max_attempts)

    @staticmethod
    def _should_report(attempt: PollAttempt) -> bool:
        return attempt.attempt == 0 or (attempt.attempt + 1) % PROGRESS_EVERY == 0

    # --- Pipeline ---

    async def create_and_deploy(self, prompt: str) -> AsyncIterator[str]:
        """Create, generate and publish an app, streaming progress messages.

        Args:
            prompt: Description of the app (10-500 characters)

        Yields:
            Human-readable progress messages; the last one carries the app URL,
            or a sanitized error message on failure. The first message and the
            failure message end with the run reference ``(ref: <id>)``

        Raises:
            AppGenError: The original error of the failing stage, after its
                sanitized message has been yielded
        """
        correlation_id = new_correlation_id()
        reference = f"(ref: {correlation_id})"
        started = time.monotonic()
        status = "cancelled"

        with correlation_scope(correlation_id):
            try:
                prompt = validate_prompt(prompt)
                logger.info("app_creation_started", extra={"prompt_length": len(prompt)})

                yield f"🔐 Authenticating... {reference}"
                credentials = self.credentials.get_credentials()
                token = await self.token_cache.get_valid_token(_token_owner(credentials))
                logger.debug("token_acquired")

                async with self._api_client_factory(credentials.hostname) as client:
                    # --- Generation ---
                    yield f"🏗️ Step 1/{TOTAL_STEPS}: Creating generation job..."
                    job_id = await self._retry(lambda: client.create_job(token, prompt))
                    if not job_id:
                        raise AppGenError("API did not return a valid job key")
                    logger.info("job_created", extra={"job_id": job_id})
                    yield f"✓ Job created with ID: {job_id}"

                    yield f"⏳ Step 2/{TOTAL_STEPS}: Waiting for job to be ready..."
                    ready: _StageResult[JobSnapshot] = _StageResult()
                    async with aclosing(
                        self._watch(
                            "job_ready",
                            lambda: client.get_job(token, job_id),
                            lambda s: s.status == JobStatus.READY_TO_GENERATE,
                            lambda s: s.status == JobStatus.FAILED,
                            self.config.ready_polling,
                            lambda n, total: f"   ⏳ Checking job status (attempt {n}/{total})...",
                            ready,
                        )
                    ) as messages:
                        async for message in messages:
                            yield message
                    logger.info("job_ready", extra={"job_id": job_id})
                    yield f"✓ Job is ready to generate (Status: {_status_text(ready.value.status)})"

                    yield f"⚙️ Step 3/{TOTAL_STEPS}: Generating application logic..."
                    await self._retry(lambda: client.trigger_generation(token, job_id))
                    logger.info("generation_triggered", extra={"job_id": job_id})
                    yield "✓ Generation triggered successfully"

                    yield f"🔄 Step 4/{TOTAL_STEPS}: Waiting for generation to complete..."
                    generated: _StageResult[JobSnapshot] = _StageResult()
                    async with aclosing(
                        self._watch(
                            "generation",
                            lambda: client.get_job(token, job_id),
                            lambda s: s.status == JobStatus.DONE,
                            lambda s: s.status == JobStatus.FAILED,
                            self.config.long_polling,
                            lambda n, total: f"   🔄 Generating application (attempt {n}/{total})...",
                            generated,
                        )
                    ) as messages:
                        async for message in messages:
                            yield message

                    application_key = generated.value.app_key
                    if not application_key:
                        raise AppGenError(
                            "Generation succeeded, but no application key was provided"
                        )
                    logger.info("generation_completed", extra={"application_key": application_key})
                    yield f"✓ Application generated (Key: {application_key})"

                    # --- Publication ---
                    yield f"🚀 Step 5/{TOTAL_STEPS}: Starting application deployment..."
                    publication_key = await self._retry(
                        lambda: client.start_publication(token, application_key)
                    )
                    if not publication_key:
                        raise AppGenError("API did not return a valid publication key")
                    logger.info("publication_started", extra={"publication_key": publication_key})
                    yield f"✓ Deployment started (Key: {publication_key})"

                    yield f"📦 Step 6/{TOTAL_STEPS}: Waiting for deployment to complete..."
                    published: _StageResult[PublicationSnapshot] = _StageResult()
                    async with aclosing(
                        self._watch(
                            "publication",
                            lambda: client.get_publication(token, publication_key),
                            lambda s: s.status == PublicationStatus.FINISHED,
                            lambda s: s.status == PublicationStatus.FAILED,
                            self.config.long_polling,
                            lambda n, total: f"   📦 Deploying application (attempt {n}/{total})...",
                            published,
                        )
                    ) as messages:
                        async for message in messages:
                            yield message
                    logger.info("publication_completed", extra={"publication_key": publication_key})
                    yield f"✓ Deployment completed (Status: {_status_text(published.value.status)})"

                    yield f"🔍 Step 7/{TOTAL_STEPS}: Retrieving application URL..."
                    details = await client.get_application(token, application_key)
                    if not details.url_path:
                        raise AppGenError("Could not retrieve final application URL")

                final_url = self.build_app_url(credentials.hostname, details.url_path)
                status = "success"
                logger.info(
                    "app_creation_completed",
                    extra={"final_url": final_url, "application_key": application_key},
                )
                yield f"🎉 Your app is ready! Access it at: {final_url}"

            except Exception as e:
                status = "failed"
                logger.error(
                    "app_creation_failed",
                    extra={"error_type": type(e).__name__, "error": str(e)},
                )
                yield f"❌ {sanitize_error_message(e)} {reference}"
                raise

            finally:
                orchestrations_total.labels(status=status).inc()
                orchestration_duration_seconds.labels(status=status).observe(
                    time.monotonic() - started
                )
                if status == "cancelled":
                    logger.info("app_creation_cancelled")

    async def run_to_completion(
        self,
        prompt: str,
        on_progress: Callable[[str], None] | None = None,
    ) -> str:
        """Drain the pipeline and return the final app URL.

        Args:
            prompt: Description of the app
            on_progress: Called with every progress message

        Raises:
            AppGenError: As raised by create_and_deploy
        """
        last_message = ""
        async with aclosing(self.create_and_deploy(prompt)) as messages:
            async for message in messages:
                last_message = message
                if on_progress is not None:
                    on_progress(message)

        match = _URL_PATTERN.search(last_message)
        if match is None:
            raise AppGenError("Pipeline finished without an application URL")
        return match.group(0)

    async def health_check(self) -> HealthCheckResult:
        """Check connectivity and credentials by obtaining a valid token.

        Never raises; failures are logged and reported in the result.
        """
        try:
            credentials = self.credentials.get_credentials()
            await self.token_cache.get_valid_token(_token_owner(credentials))
        except Exception as e:
            logger.error("health_check_failed", extra={"error_type": type(e).__name__})
            return HealthCheckResult(
                success=False,
                message=(
                    "OutSystems API is not accessible. "
                    "Please check your configuration and credentials."
                ),
            )
        logger.info("health_check_passed")
        return HealthCheckResult(
            success=True,
            message="OutSystems API is accessible and authentication is working properly.",
        )
