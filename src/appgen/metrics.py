"""Prometheus metrics for app generation runs.

Uses the ``appgen_*`` prefix for all metrics. Labels carry endpoint templates
and enum values only, never ids, so cardinality stays bounded.

The CLI is a short-lived process, so nothing scrapes it: ``push_metrics()``
hands the registry to a Prometheus Pushgateway before the process exits
(enabled with APPGEN_PUSHGATEWAY_ENABLED, target APPGEN_PUSHGATEWAY_URL).
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    pushadd_to_gateway,
)

logger = logging.getLogger("appgen.metrics")

__all__ = [
    "JOB_NAME",
    "api_requests_total",
    "auth_exchanges_total",
    "orchestration_duration_seconds",
    "orchestrations_total",
    "polls_total",
    "push_metrics",
    "retries_total",
    "token_cache_total",
]

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

# Outbound API calls
api_requests_total = Counter(
    "appgen_api_requests_total",
    "Outbound API requests",
    ["method", "endpoint", "outcome"],  # outcome: ok, http_4xx, http_5xx, timeout, transport
)

# Retry engine
retries_total = Counter(
    "appgen_retries_total",
    "Retry attempts after a transient failure",
    ["error_type"],
)

# Poll engine
polls_total = Counter(
    "appgen_polls_total",
    "Status polls issued",
    ["stage", "outcome"],  # outcome: success, failure, pending
)

# Authentication
auth_exchanges_total = Counter(
    "appgen_auth_exchanges_total",
    "Federated authentication exchanges",
    ["status", "step"],  # step: last step reached (failed step on failure)
)

token_cache_total = Counter(
    "appgen_token_cache_total",
    "Token cache lookups",
    ["result"],  # hit, miss
)

# Orchestration
orchestrations_total = Counter(
    "appgen_orchestrations_total",
    "Orchestration runs",
    ["status"],  # success, failed, cancelled
)

orchestration_duration_seconds = Histogram(
    "appgen_orchestration_duration_seconds",
    "End-to-end orchestration duration",
    ["status"],
    buckets=[30, 60, 120, 300, 600, 1200, 1800, 3600, 7200],
)


# =============================================================================
# PUSHGATEWAY
# =============================================================================

JOB_NAME = "appgen_cli"


def push_metrics(
    gateway: str,
    job: str = JOB_NAME,
    timeout: float = 2.0,
    registry: CollectorRegistry = REGISTRY,
) -> bool:
    """Push the registry to a Pushgateway.

    Failures are logged and swallowed: a missing gateway never changes the
    outcome of the command that produced the metrics.

    Args:
        gateway: Pushgateway address (e.g., localhost:9091)
        job: Job label for the pushed group
        timeout: Seconds to wait for the gateway
        registry: Registry to push (default: the global one)

    Returns:
        True if the push succeeded
    """
    try:
        pushadd_to_gateway(gateway, job=job, registry=registry, timeout=timeout)
    except Exception as e:
        logger.warning(
            "pushgateway_push_failed",
            extra={"gateway": gateway, "error": str(e), "error_type": type(e).__name__},
        )
        return False
    logger.debug("pushgateway_push_completed", extra={"gateway": gateway, "job": job})
    return True
